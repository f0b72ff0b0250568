"""
MiGeL Mapper: Streamlit UI

Step 1: load the MiGeL catalog (upload the BAG XLSX or download it)
Step 2: upload a swissdamed JSON export, match every UDI row, download results

Run with:
    streamlit run src/app.py
"""

import io
import json

import streamlit as st
import pandas as pd

from catalog import MIGEL_FILE, MIGEL_URL, download_catalog, load_catalog
from matcher import (
    DEFAULT_CONFIG,
    Language,
    MatchQuery,
    RESULT_COLUMNS,
    build_index,
    coverage_summary,
    explain_match,
    matched_rows,
    run_matching,
)
from udi import UdiSourceError, flatten_records, parse_json_payload

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="MiGeL Mapper",
    page_icon="🔗",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.title("🔗 Swissdamed UDI → MiGeL Mapper")

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.header("⚙️ Acceptance Rules")
st.sidebar.markdown(
    f"- **2+ keywords:** ratio ≥ {DEFAULT_CONFIG.multi_min_ratio}, "
    f"longest keyword ≥ {DEFAULT_CONFIG.multi_min_length} chars"
)
st.sidebar.markdown(
    f"- **1 keyword:** ratio ≥ {DEFAULT_CONFIG.single_min_ratio}, "
    f"keyword ≥ {DEFAULT_CONFIG.single_min_length} chars"
)
st.sidebar.caption("Keywords are only compared within the same language (DE/FR/IT).")


# =========================================================================
# STEP 1: MiGeL catalog
# =========================================================================

@st.cache_resource(show_spinner="Parsing MiGeL catalog...")
def build_catalog(data: bytes):
    """Parse the workbook and build the keyword index once per uploaded file."""
    items = load_catalog(io.BytesIO(data))
    return items, build_index(items)


st.header("Step 1: MiGeL Catalog")

catalog_upload = st.file_uploader("Upload MiGeL Excel (.xlsx)", type=["xlsx"], key="migel_upload")
if catalog_upload is not None:
    st.session_state['catalog_bytes'] = catalog_upload.getvalue()

if st.button("Download current MiGeL list from BAG"):
    with st.spinner("Downloading..."):
        try:
            path = download_catalog(MIGEL_URL, MIGEL_FILE)
            with open(path, 'rb') as f:
                st.session_state['catalog_bytes'] = f.read()
        except Exception as e:
            st.error(f"Download failed: {e}")
            st.stop()

if 'catalog_bytes' not in st.session_state:
    st.info("Upload the MiGeL workbook or download it from the BAG website to continue.")
    st.stop()

try:
    items, index = build_catalog(st.session_state['catalog_bytes'])
except Exception as e:
    st.error(f"Failed to parse MiGeL workbook: {e}")
    st.stop()

st.success(f"MiGeL catalog: **{len(items):,}** positions, **{len(index):,}** index keywords")
with st.expander("Preview catalog (first 20 positions)"):
    st.dataframe(
        pd.DataFrame([
            {
                'position': it.position_id,
                'bezeichnung': it.display_text,
                'keywords_de': ', '.join(it.keywords(Language.DE)),
                'keywords_fr': ', '.join(it.keywords(Language.FR)),
                'keywords_it': ', '.join(it.keywords(Language.IT)),
            }
            for it in items[:20]
        ]),
        use_container_width=True, hide_index=True,
    )

# ------------------------------------------------------------------
# Test Single Match
# ------------------------------------------------------------------
st.divider()
st.subheader("🧪 Test Single Match")
tc1, tc2, tc3, tc4 = st.columns(4)
with tc1:
    test_de = st.text_input("German text", value="Rollstuhl manuell faltbar", key="test_de")
with tc2:
    test_fr = st.text_input("French text", value="", key="test_fr")
with tc3:
    test_it = st.text_input("Italian text", value="", key="test_it")
with tc4:
    test_brand = st.text_input("Brand", value="", key="test_brand")

if st.button("Test Match"):
    rows = explain_match(MatchQuery(test_de, test_fr, test_it, test_brand), items, index)
    if not rows:
        st.warning("No candidate positions share a keyword with this text.")
    else:
        best = rows[0]
        if best['passed']:
            st.success(f"Match: `{best['position_id']}`: {best['bezeichnung']}")
        else:
            st.warning("No candidate passes the acceptance rules.")
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)


# =========================================================================
# STEP 2: UDI rows
# =========================================================================
st.divider()
st.header("Step 2: Upload Swissdamed Export & Run Mapping")

udi_upload = st.file_uploader("Upload swissdamed JSON", type=["json"], key="udi_upload")
if udi_upload is None:
    st.stop()

try:
    values = parse_json_payload(json.loads(udi_upload.getvalue().decode('utf-8')))
except (ValueError, UdiSourceError) as e:
    st.error(f"Failed to parse: {e}")
    st.stop()

df_rows = flatten_records(values)
st.markdown(f"Parsed **{len(values):,}** records into **{len(df_rows):,}** UDI-DI rows.")
with st.expander("Preview Raw Rows"):
    st.dataframe(df_rows.head(10), use_container_width=True, hide_index=True)

if st.button("🚀 Run MiGeL Mapping", type="primary", use_container_width=True):
    progress = st.progress(0, text="Starting...")

    def on_progress(current, total):
        progress.progress(current / total, text=f"Matching... {current:,}/{total:,}")

    df_result = run_matching(df_rows, items, index, progress_callback=on_progress)
    progress.progress(1.0, text="✅ Matching complete!")

    summary = coverage_summary(df_result)
    ca, cb, cc = st.columns(3)
    ca.metric("Rows", f"{summary['total']:,}")
    cb.metric("✅ Matched", f"{summary['matched']:,}", f"{summary['match_rate']:.1f}%")
    cc.metric("❌ No Position", f"{summary['unmatched']:,}")

    if summary['top_positions']:
        st.subheader("Most frequent positions")
        st.dataframe(
            pd.DataFrame(summary['top_positions'], columns=['migel_code', 'rows']),
            use_container_width=True, hide_index=True,
        )

    df_matched = matched_rows(df_result)
    st.subheader("📋 Matched Rows")
    st.dataframe(df_matched.head(100), use_container_width=True, hide_index=True)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------
    st.divider()
    d1, d2 = st.columns(2)
    d1.download_button(
        label="📥 Download matched rows (CSV)",
        data=df_matched.to_csv(index=False).encode('utf-8-sig'),
        file_name="swissdamed_migel.csv",
        mime="text/csv",
        use_container_width=True,
    )

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df_matched.to_excel(writer, sheet_name='Matched', index=False)
        pd.DataFrame([
            {'Metric': 'Rows', 'Value': summary['total']},
            {'Metric': 'Matched', 'Value': summary['matched']},
            {'Metric': 'Match Rate', 'Value': f"{summary['match_rate']:.2f}%"},
            {'Metric': 'MiGeL Positions', 'Value': len(items)},
        ]).to_excel(writer, sheet_name='Summary', index=False)
    output.seek(0)
    d2.download_button(
        label="📥 Download mapped Excel file",
        data=output,
        file_name="swissdamed_migel.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        type="primary",
        use_container_width=True,
    )

# ---------------------------------------------------------------------------
# Footer
# ---------------------------------------------------------------------------
st.divider()
st.caption(
    "MiGeL Mapper: per-language keyword matching against the BAG MiGeL list. "
    f"Output columns: {', '.join(RESULT_COLUMNS)}. The catalog index is rebuilt every session."
)
