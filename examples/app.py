"""Example Streamlit app using snowquery.

Install the package with the ``streamlit`` extra and run
``streamlit run examples/app.py`` from the repository root.  Connections
are read from ``~/snowquery_creds.yaml`` (or ``SNOWQUERY_CREDS_PATH``).
"""

# examples/app.py
import time
import streamlit as st

from snowquery import SnowqueryError, load_credentials, query_db, resolve_settings

st.title("snowquery – local smoke test")

settings = resolve_settings()
try:
    connections = sorted(load_credentials(settings.creds_path))
except OSError as e:
    st.error(f"Could not read {settings.creds_path}: {e}")
    st.stop()

conn_name = st.selectbox("Connection", connections)
sql = st.text_area("SQL", "SELECT 1 AS ok")
cache_table = st.text_input("Cache into DuckDB table (optional)", "")
overwrite = st.checkbox("Overwrite cache table", value=True)

if st.button("Run query"):
    t0 = time.time()
    try:
        result = query_db(
            sql,
            conn_name=conn_name,
            cache_table_name=cache_table or None,
            overwrite=overwrite,
            settings=settings,
        )
    except SnowqueryError as e:
        st.error(str(e))
    else:
        if isinstance(result, str):
            st.success(result)
        else:
            st.dataframe(result)
        st.caption(f"elapsed: {time.time()-t0:.3f}s")
