import io
import os

import requests
import streamlit as st

API_BASE = os.getenv("ORDINAL_API_BASE", os.getenv("API_BASE", "http://localhost:3000")).rstrip("/")
# Conversions run synchronously inside the upload request.
REQUEST_TIMEOUT = float(os.getenv("ORDINAL_UI_TIMEOUT", "600"))

MODES = {
    "Video (MP4 → GIF + WEBP)": {
        "endpoint": "/upload",
        "field": "videoFile",
        "types": ["mp4"],
    },
    "Image (JPEG/PNG/GIF → WEBP)": {
        "endpoint": "/upload-image",
        "field": "imageFile",
        "types": ["jpg", "jpeg", "png", "gif"],
    },
}


def _reset_state():
    for key in ["result", "error", "error_detail", "error_stdout"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _convert(uploaded_file: io.BytesIO, mode: dict[str, object]) -> dict[str, object] | None:
    files = {
        str(mode["field"]): (uploaded_file.name, uploaded_file.getvalue(), uploaded_file.type or "application/octet-stream")
    }
    try:
        resp = requests.post(f"{API_BASE}{mode['endpoint']}", files=files, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        st.session_state["error"] = f"Upload failed. The server is unavailable: {e}"
        return None
    try:
        data = resp.json()
    except ValueError:
        st.session_state["error"] = f"Unexpected response: {resp.status_code} {resp.text[:500]}"
        return None
    if resp.status_code != 200:
        st.session_state["error"] = f"Error: {data.get('message', 'Conversion failed.')}"
        st.session_state["error_detail"] = data.get("error")
        st.session_state["error_stdout"] = data.get("stdout")
        return None
    return data


def _fetch_bytes(url: str) -> bytes | None:
    try:
        resp = requests.get(f"{API_BASE}{url}", timeout=60)
    except requests.RequestException:
        return None
    return resp.content if resp.status_code == 200 else None


def _show_artifact(label: str, url: str) -> None:
    filename = url.rsplit("/", 1)[-1]
    st.markdown(f"**{label}:** [{filename}]({API_BASE}{url})")
    content = _fetch_bytes(url)
    if content is None:
        st.caption("Preview not available")
        return
    st.image(content, caption=filename)
    st.download_button(
        label=f"Download {label}",
        data=content,
        file_name=filename,
        mime="image/gif" if filename.endswith(".gif") else "image/webp",
        key=f"download-{filename}",
    )


def main() -> None:
    st.set_page_config(page_title="Ordinal Converter", page_icon="🎞️", layout="centered")
    st.title("🎞️ Ordinal Converter")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    mode_name = st.radio("What are you uploading?", list(MODES), horizontal=True)
    mode = MODES[mode_name]

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Select a file (max 50MB)",
        type=mode["types"],  # type: ignore[arg-type]
        key=f"uploader-{mode['field']}-{st.session_state['upload_key']}",
    )

    if uploaded and st.button("Convert", type="primary"):
        for key in ["result", "error", "error_detail", "error_stdout"]:
            st.session_state.pop(key, None)
        with st.spinner("Uploading and converting, please wait..."):
            data = _convert(uploaded, mode)
        if data is not None:
            st.session_state["result"] = data

    if result := st.session_state.get("result"):
        st.success(str(result.get("message", "Conversion successful!")))
        if gif_url := result.get("gifUrl"):
            _show_artifact("GIF", str(gif_url))
        if webp_url := result.get("webpUrl"):
            _show_artifact("WEBP", str(webp_url))
        if script_stdout := result.get("script_stdout"):
            with st.expander("Converter output"):
                st.code(str(script_stdout))

    if err := st.session_state.get("error"):
        st.error(err)
        detail = st.session_state.get("error_detail")
        stdout = st.session_state.get("error_stdout")
        if detail or stdout:
            with st.expander("Details"):
                if detail:
                    st.caption("Error")
                    st.code(str(detail))
                if stdout and str(stdout).strip():
                    st.caption("Converter STDOUT")
                    st.code(str(stdout))


if __name__ == "__main__":
    main()
