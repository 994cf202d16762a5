from __future__ import annotations

import json
import tempfile
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from io import BytesIO
from pathlib import Path

import streamlit as st

from invoice_automation.airtable import get_airtable_client
from invoice_automation.airtable_schema import FILE_FIELDS
from invoice_automation.config import get_settings
from invoice_automation.errors import OCRError
from invoice_automation.models import LocalDocumentsResult
from invoice_automation.pipeline import process_local_pdf
from invoice_automation.status import group_file_records

RECENT_FILES_LIMIT = 50


def _zip_results(results: list[LocalDocumentsResult]) -> bytes:
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for r in results:
            zf.writestr(
                f"{Path(r.source_file).stem}_documents.json",
                json.dumps(r.model_dump(), indent=2, ensure_ascii=False),
            )
    return buf.getvalue()


@st.cache_data(ttl=15, show_spinner=False)
def _recent_files() -> list[dict]:
    return get_airtable_client().list_records(
        get_settings().airtable.table_name,
        sort=[{"field": FILE_FIELDS.CREATED_AT, "direction": "desc"}],
        max_records=RECENT_FILES_LIMIT,
    )


def _process_upload(up, mode: str) -> LocalDocumentsResult:
    with tempfile.TemporaryDirectory() as td:
        tmp_pdf = Path(td) / up.name
        tmp_pdf.write_bytes(up.getvalue())
        return process_local_pdf(tmp_pdf, mode=mode)


st.set_page_config(page_title="Invoice Automation", page_icon="🧾", layout="wide")

st.title("Invoice Automation")
st.caption("Uploaded files and their pipeline stage, plus local PDF OCR → document parsing.")

settings = get_settings()

with st.sidebar:
    st.header("Settings")
    mode = st.radio(
        "OCR mode",
        ["native", "chunked"],
        index=0 if settings.mode == "native" else 1,
        help="native sends the whole PDF; chunked OCRs page image tiles in parallel",
    )
    num_workers = st.slider("Parallel workers", min_value=1, max_value=4, value=1,
                            help="Number of PDFs to process in parallel (1-4)")

    st.divider()
    st.subheader("Key status")
    if settings.openai.api_key:
        st.success("OpenAI API key detected.")
    else:
        st.warning("No `OPENAI_API_KEY` found. OCR and parsing will fail.")
    if settings.airtable.pat and settings.airtable.base_id:
        st.success("Airtable credentials detected.")
    else:
        st.info("No `AIRTABLE_PAT` / `AIRTABLE_BASE_ID`: the Files view is disabled.")

files_tab, local_tab = st.tabs(["Files", "Local PDFs"])

with files_tab:
    if not (settings.airtable.pat and settings.airtable.base_id):
        st.info("Configure Airtable to list uploaded files.")
    else:
        if st.button("Refresh"):
            _recent_files.clear()
        try:
            records = _recent_files()
        except OCRError as e:
            st.error(f"Could not load Files: {e.message}")
            records = []

        if not records:
            st.info("No files uploaded yet.")
        for group, files in group_file_records(records):
            st.subheader(f"{group.label} ({len(files)})")
            st.caption(group.description)
            for f in files:
                c1, c2 = st.columns([2, 3])
                c1.markdown(f"**{f['name']}**  \n`{f['id']}` · {f['status'] or '—'}")
                with c2:
                    if f["upload_status"] in ("error", "duplicate"):
                        st.error(f["error"] or "Processing failed")
                    else:
                        st.progress(f["progress"] / 100, text=f["status_text"])

with local_tab:
    uploads = st.file_uploader("Upload one or more PDFs", type=["pdf"], accept_multiple_files=True)

    col_a, col_b, _ = st.columns([1, 1, 2])
    with col_a:
        run_btn = st.button("Process PDFs", type="primary", disabled=not uploads)
    with col_b:
        clear_btn = st.button("Clear results")

    if clear_btn:
        st.session_state.pop("local_results", None)
        st.rerun()

    if run_btn and uploads:
        results: dict[int, LocalDocumentsResult] = {}
        with st.spinner(f"Processing {len(uploads)} PDF(s) with {num_workers} worker(s)…"):
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                future_to_idx = {executor.submit(_process_upload, up, mode): i for i, up in enumerate(uploads)}
                for future in as_completed(future_to_idx):
                    idx = future_to_idx[future]
                    try:
                        results[idx] = future.result()
                    except Exception as e:
                        results[idx] = LocalDocumentsResult(source_file=uploads[idx].name, error=str(e))
        st.session_state["local_results"] = [results[i].model_dump() for i in sorted(results)]

    local_results = [LocalDocumentsResult(**r) for r in st.session_state.get("local_results") or []]
    if not local_results:
        st.info("Upload PDFs and click **Process PDFs** to see the parsed documents.")
    else:
        st.download_button(
            "Download all JSON (zip)",
            data=_zip_results(local_results),
            file_name="documents.zip",
            mime="application/zip",
        )
        tabs = st.tabs([f"{i + 1}. {r.source_file}" for i, r in enumerate(local_results)])
        for n, (tab, r) in enumerate(zip(tabs, local_results)):
            with tab:
                if r.error:
                    st.error(f"Pipeline error: {r.error}")
                    continue
                c1, c2, c3 = st.columns(3)
                c1.metric("Pages", r.total_pages)
                c2.metric("Documents", len(r.documents))
                c3.metric("Mode", r.mode)
                for i, doc in enumerate(r.documents, start=1):
                    st.subheader(f"{i}. {doc.document_type}: {doc.vendor_name or '—'} {doc.invoice_number or ''}")
                    st.dataframe([li.model_dump() for li in doc.line_items], use_container_width=True, hide_index=True)
                with st.expander("Raw OCR text"):
                    st.text(r.raw_text)
                st.download_button(
                    "Download this JSON",
                    data=json.dumps(r.model_dump(), indent=2, ensure_ascii=False).encode("utf-8"),
                    file_name=f"{Path(r.source_file).stem}_documents.json",
                    mime="application/json",
                    key=f"dl_{n}_{r.source_file}",
                )
