from __future__ import annotations
import streamlit as st
import pandas as pd

from costa_core.config import load_settings
from costa_core.errors import CartValidationError, error_boundary, handle_error
from costa_core.logging import setup_logging, get_logger
from costa_core.losses import LossCart, LOSS_REASONS, CONSUMPTION_REASONS, RESOLUTIONS
from costa_core.losses.cart import EXPIRED_REASON, default_reason
from costa_core.offline import OperationKind, build_offline_service
from costa_core.pricing import add_margin_columns, quote_price
from costa_core.ui import render_offline_indicator

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Costa Back-Office",
    page_icon="🛒",
    layout="wide",
)


@st.cache_resource
def _init_logging() -> bool:
    setup_logging()
    return True


@st.cache_resource
def get_service():
    """One offline service per server process."""
    service = build_offline_service(load_settings())
    service.start()
    return service


_init_logging()
logger = get_logger("costa_app")
service = get_service()

if "loss_cart" not in st.session_state:
    st.session_state.loss_cart = LossCart()
cart: LossCart = st.session_state.loss_cart

# ============================================================================
# SIDEBAR
# ============================================================================
st.sidebar.title("🛒 Costa Back-Office")
user_id = st.sidebar.text_input("Operator ID", value=st.session_state.get("user_id", ""))
st.session_state.user_id = user_id
render_offline_indicator(service, show_always=True)


@error_boundary(default_return=None, error_message="Could not save the entry")
def save_entry(note: str):
    try:
        batch = cart.build_batch(user_id, note=note)
    except CartValidationError as e:
        handle_error(e, log_error=False)
        return None

    result = service.submit_entry_batch(batch)
    if result.synced:
        st.success("Entry saved!")
    elif result.queued:
        st.info("Entry saved on this device. It will be sent when the connection is back.")
    else:
        st.error(f"Entry could not be saved: {result.error}")
        return result

    cart.clear()
    return result


# ============================================================================
# TABS
# ============================================================================
tab_losses, tab_counts, tab_catalog, tab_sync = st.tabs(
    ["📉 Losses", "📋 Counts", "📦 Catalog", "🔄 Sync"]
)

with tab_losses:
    entry_type = st.radio("Type", ["perda", "consumo"], horizontal=True,
                          format_func=lambda t: "Loss" if t == "perda" else "Internal use")
    code = st.text_input("Barcode", key="loss_barcode")

    if code:
        item = service.lookup_barcode(code)
        if item is None:
            st.error(f"Item with code {code} is not in stock. Register it in the catalog first.")
            info = service.lookup_product_info(code)
            if info:
                st.caption(f"Public database: {info.get('name') or info.get('nome', '')} "
                           f"({info.get('brand') or info.get('marca', '')})")
        else:
            st.markdown(f"**{item.name}** · {item.brand or ''} · cost R$ {item.unit_cost:.2f}")
            reasons = CONSUMPTION_REASONS if entry_type == "consumo" else LOSS_REASONS
            col1, col2, col3 = st.columns(3)
            with col1:
                quantity = st.text_input("Quantity", value="1")
                unit = st.selectbox("Unit", ["unidade", "kg"])
            with col2:
                reason_keys = list(reasons)
                reason = st.selectbox("Reason", reason_keys,
                                      index=reason_keys.index(default_reason(entry_type)),
                                      format_func=reasons.get)
                resolution = st.selectbox("Resolution", list(RESOLUTIONS), format_func=RESOLUTIONS.get)
            with col3:
                expiry = st.date_input("Expiry date", value=None) if reason == EXPIRED_REASON else None

            if st.button("➕ Add to entry"):
                try:
                    cart.add(item, quantity, reason=reason, resolution=resolution,
                             expiry_date=expiry, unit=unit, entry_type=entry_type)
                    st.success("Item added to the entry!")
                except CartValidationError as e:
                    handle_error(e, log_error=False)

    if len(cart):
        st.dataframe(
            pd.DataFrame([
                {"Barcode": line.barcode, "Item": line.name, "Qty": line.quantity,
                 "Unit price": line.unit_price, "Total": line.total, "Reason": line.reason}
                for line in cart
            ]),
            use_container_width=True,
            hide_index=True,
        )
        st.metric("Entry total", f"R$ {cart.total_value():.2f}")
        note = st.text_area("Note")
        col_save, col_clear = st.columns(2)
        if col_save.button("💾 Save entry", type="primary", disabled=not user_id):
            save_entry(note)
            st.rerun()
        if col_clear.button("🗑️ Clear"):
            cart.clear()
            st.rerun()

with tab_counts:
    kinds = {
        OperationKind.RECORD_PULP_COUNT: ("polpas", "polpa_id", "nome_polpa"),
        OperationKind.RECORD_PRODUCE_RECEIPT: ("legumes", "legume_id", "nome_legume"),
        OperationKind.RECORD_BEVERAGE_COUNT: ("produtos_coca", "produto_id", "nome_produto"),
    }
    kind = st.selectbox("Record", list(kinds), format_func=lambda k: k.value)
    collection, id_field, name_field = kinds[kind]
    rows = service.cache.collection(collection)

    if not rows:
        st.info("No cached items for this record yet. Connect once to download them.")
    else:
        choice = st.selectbox("Item", rows, format_func=lambda r: r.get(name_field, r.get("id")))
        amount = st.number_input("Quantity", min_value=0.0, step=1.0)
        if st.button("💾 Save record", disabled=not user_id):
            result = service.submit_record(kind, {
                id_field: choice["id"],
                "quantidade": amount,
                "usuario_id": user_id,
            })
            if result.synced:
                st.success("Record saved!")
            elif result.queued:
                st.info("Record saved on this device and queued for sync.")
            else:
                st.error(f"Record could not be saved: {result.error}")

with tab_catalog:
    query = st.text_input("Search", placeholder="name, brand or barcode")
    if query:
        matches = service.search_catalog(query)
        st.caption(f"{len(matches)} item(s)")
        df = pd.DataFrame([vars(item) for item in matches])
    else:
        df = service.cache.as_dataframe()
    if not df.empty:
        df = add_margin_columns(df.fillna({"sale_price": 0}), cost_col="unit_cost", price_col="sale_price")
    st.dataframe(df, use_container_width=True, hide_index=True)

    if query and matches:
        st.subheader("Price quote")
        col_item, col_target = st.columns([3, 1])
        item = col_item.selectbox("Item", matches, format_func=lambda i: i.name)
        target = col_target.number_input("Target margin %", min_value=0.0, value=30.0, step=5.0)
        quote = quote_price(item.unit_cost, item.sale_price, target_margin=target)
        col_now, col_target_price, col_suggested = st.columns(3)
        col_now.metric("Current margin", f"{quote['current_margin']:.1f}%")
        col_target_price.metric("Price at target", f"R$ {quote['target_price']:.2f}")
        col_suggested.metric("Cost + R$ 1.00", f"R$ {quote['suggested_price']:.2f}")

with tab_sync:
    status = service.get_status()
    st.json(status)

    failed = service.failed_operations()
    if failed:
        st.subheader("Rejected by the server")
        for op in failed:
            with st.expander(f"{op.kind.value} · {op.created_at:%d/%m %H:%M} · {op.attempts} attempt(s)"):
                st.code(op.last_error or "")
                st.json(op.payload.to_dict())
                col_retry, col_discard = st.columns(2)
                if col_retry.button("Retry", key=f"retry_{op.id}"):
                    service.retry_failed(op.id)
                    st.rerun()
                if col_discard.button("Discard", key=f"discard_{op.id}"):
                    service.discard_failed(op.id)
                    logger.warning(f"Operator {user_id or '?'} discarded {op.id}")
                    st.rerun()
