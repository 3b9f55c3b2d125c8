import os

import requests
import streamlit as st

API_BASE = os.getenv("USDZ_SERVICE_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
UI_MODE = os.getenv("USDZ_SERVICE_UI_MODE", "local").lower()

MODE_LABELS = {
    "local": "Upload a file",
    "cloud": "Convert a bucket object",
}


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}"
    if isinstance(data, dict) and data.get("message"):
        return f"{resp.status_code} {data['message']}"
    return f"{resp.status_code} {resp.text}"


def _submit_upload(name: str, data: bytes, api_base: str = API_BASE) -> tuple[dict[str, str] | None, str | None]:
    """POST the model to /api/convert; returns (body, None) or (None, error)."""
    try:
        files = {"file": (name, data, "application/octet-stream")}
        resp = requests.post(f"{api_base}/api/convert", files=files, timeout=600)
    except requests.RequestException as e:
        return None, f"Failed to connect to API: {e}"
    if resp.status_code != 200:
        return None, f"Conversion failed: {_error_message(resp)}"
    return resp.json(), None


def _submit_object(object_name: str, api_base: str = API_BASE) -> tuple[dict[str, str] | None, str | None]:
    try:
        resp = requests.post(f"{api_base}/api/convert", data={"filename": object_name}, timeout=600)
    except requests.RequestException as e:
        return None, f"Failed to connect to API: {e}"
    if resp.status_code != 200:
        return None, f"Conversion failed: {_error_message(resp)}"
    return resp.json(), None


def _fetch_result(request_id: str, name: str, api_base: str = API_BASE) -> tuple[bytes | None, str | None]:
    try:
        resp = requests.get(
            f"{api_base}/api/download",
            params={"id": request_id, "name": name},
            timeout=120,
        )
    except requests.RequestException as e:
        return None, f"Download failed: {e}"
    if resp.status_code != 200:
        return None, f"Download error: {_error_message(resp)}"
    return resp.content, None


def _reset_state() -> None:
    for key in ["result", "usdz", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _render_upload() -> None:
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload a glTF or GLB model",
        type=["gltf", "glb"],
        key=f"uploader-{st.session_state['upload_key']}",
    )
    if uploaded and "result" not in st.session_state and st.button("Convert to USDZ", type="primary"):
        with st.spinner("Converting..."):
            body, err = _submit_upload(uploaded.name, uploaded.getvalue())
            if body is not None:
                content, err = _fetch_result(body["id"], body["name"])
                if content is not None:
                    st.session_state["result"] = body
                    st.session_state["usdz"] = content
        if err:
            st.session_state["error"] = err

    if "usdz" in st.session_state:
        result = st.session_state["result"]
        st.success("Conversion complete!")
        st.download_button(
            label=f"Download {result['name']}",
            data=st.session_state["usdz"],
            file_name=result["name"],
            mime="model/vnd.usdz+zip",
        )


def _render_object() -> None:
    object_name = st.text_input("Object name in the bucket", placeholder="models/chair.glb")
    if object_name and st.button("Convert to USDZ", type="primary"):
        with st.spinner("Converting..."):
            body, err = _submit_object(object_name)
        if body is not None:
            st.session_state["result"] = body
        if err:
            st.session_state["error"] = err

    result = st.session_state.get("result")
    if result and result.get("uploadedUrl"):
        st.success(f"Uploaded to {result['objectPath']}")
        st.markdown(f"[Download {result['name']}]({result['uploadedUrl']}) (link valid for one hour)")


def main() -> None:
    st.set_page_config(page_title="glTF to USDZ", page_icon="🧊", layout="centered")
    st.title("🧊 glTF to USDZ")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    modes = list(MODE_LABELS)
    mode = st.radio(
        "Source",
        modes,
        index=modes.index(UI_MODE) if UI_MODE in modes else 0,
        format_func=MODE_LABELS.get,
        horizontal=True,
    )
    if mode == "local":
        _render_upload()
    else:
        _render_object()

    if err := st.session_state.pop("error", None):
        st.error(err)


if __name__ == "__main__":
    main()
