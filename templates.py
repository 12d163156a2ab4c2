"""
Message templates — Hindi WhatsApp texts with {placeholder} fields.
"""

from config import SHOP_NAME, SHOP_PHONE, BUSINESS_HOURS

_FOOTER = "\n\n{shop_name} 😊\nPhone: {shop_phone}"

TEMPLATES = {
    "welcome": (
        "🙏 स्वागत है *{customer_name}* जी!\n\n"
        "{shop_name} में आपका order दर्ज हो गया है।\n"
        "📋 Order ID: {order_id}\n"
        "🏪 Shop timing: {business_hours}"
        + _FOOTER
    ),
    "order_confirmation": (
        "✅ Order Confirm हो गया! ✅\n\n"
        "Hello *{customer_name}* जी 👋\n\n"
        "📋 Order की Details:\n"
        "- Order ID: {order_id}\n"
        "- Item: {garment_type} 👔\n"
        "- Ready होगा: {delivery_date}\n\n"
        "💰 Amount Details:\n"
        "- Total: ₹{total_amount}\n"
        "- Advance मिला: ₹{advance_amount} ✅\n"
        "- बाकी Amount: ₹{remaining_amount}\n\n"
        "🔔 जैसे ही ready होगा, आपको message भेज देंगे!"
        + _FOOTER
    ),
    "order_ready": (
        "🎉 आपका Order तैयार है! 🎉\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "आपका {garment_type} बिल्कुल ready है! ✨\n"
        "📋 Order ID: {order_id}\n"
        "📅 तैयार हुआ: {ready_date}\n\n"
        "💰 बाकी Amount: ₹{remaining_amount}\n"
        "🏪 Shop time: {business_hours}"
        + _FOOTER
    ),
    "delivery_notification": (
        "📦 Order Delivered! 📦\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "आपका {garment_type} (Order {order_id}) deliver हो गया है।\n"
        "हमारी सेवा चुनने के लिए धन्यवाद! ⭐"
        + _FOOTER
    ),
    "pickup_reminder": (
        "🔔 Pickup Reminder #{reminder_number} 🔔\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "आपका {garment_type} (Order {order_id}) {days_waiting} दिन से ready है।\n"
        "कृपया जल्द आकर ले जाएं।\n"
        "🏪 Shop time: {business_hours}"
        + _FOOTER
    ),
    "payment_reminder": (
        "💳 Payment Reminder #{reminder_number} 💳\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "Order {order_id} ({garment_type}) का ₹{remaining_amount} अभी शेष है।\n"
        "कृपया सुविधा अनुसार जल्द Payment कर दीजिए।"
        + _FOOTER
    ),
    "fabric_welcome": (
        "🙏 स्वागत है *{customer_name}* जी!\n\n"
        "{shop_name} से fabric खरीदने के लिए धन्यवाद।\n"
        "📋 Order ID: {order_id}"
        + _FOOTER
    ),
    "fabric_purchase": (
        "🧵 Fabric Purchase Details 🧵\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "- Order ID: {order_id}\n"
        "- Fabric: {fabric_type} {fabric_color}\n"
        "- Quantity: {quantity} meter\n"
        "- Total: ₹{total_amount}\n"
        "- Advance: ₹{advance_amount}\n"
        "- बाकी: ₹{remaining_amount}"
        + _FOOTER
    ),
    "fabric_payment_reminder": (
        "💳 Fabric Payment Reminder #{reminder_number} 💳\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "Fabric Order {order_id} का ₹{remaining_amount} अभी शेष है।\n"
        "कृपया जल्द Payment कर दीजिए।"
        + _FOOTER
    ),
    "combined_order": (
        "🧵👔 Combined Order Confirm! 👔🧵\n\n"
        "नमस्ते *{customer_name}* जी 🙏\n\n"
        "- Combined Order ID: {order_id}\n"
        "- Fabric Order: {fabric_order_id}\n"
        "- Tailoring Order: {tailor_order_id}\n"
        "- Total: ₹{total_amount}\n"
        "- Advance: ₹{advance_amount}\n"
        "- बाकी: ₹{remaining_amount}"
        + _FOOTER
    ),
    "worker_daily_data": (
        "📊 Daily Work Report 📊\n\n"
        "नमस्ते {worker_name} जी 🙏\n\n"
        "📅 Date: {work_date}\n"
        "- आज का काम: {work_summary}\n"
        "- आज की कमाई: ₹{daily_amount}"
        + _FOOTER
    ),
}

FALLBACK_TEMPLATES = {
    "EXACT_DUPLICATE": (
        "🙏 क्षमा करें! आपको पहले से ही message भेजा जा चुका है। "
        "अगर कोई समस्या है तो कृपया हमसे संपर्क करें।"
        + _FOOTER
    ),
    "SIMILAR_CONTENT_RECENTLY_SENT": (
        "🙏 क्षमा करें! आपको पहले से ही message भेजा जा चुका है। "
        "अगर कोई समस्या है तो कृपया हमसे संपर्क करें।"
        + _FOOTER
    ),
    "RATE_LIMIT_EXCEEDED": (
        "🙏 आपको आज कई messages भेजे जा चुके हैं। "
        "कृपया कल फिर से check करें या हमसे direct contact करें।"
        + _FOOTER
    ),
    "COOLDOWN_ACTIVE": (
        "🙏 कृपया कुछ minutes wait करें। आपको जल्द ही update मिलेगा।"
        + _FOOTER
    ),
}


class _Defaulting(dict):
    def __missing__(self, key):
        return "-"


def render(message_type: str, fields: dict) -> str:
    """Render the template for a message type. Missing fields print as '-'."""
    template = TEMPLATES.get(message_type)
    if template is None:
        raise KeyError(f"No template for message type '{message_type}'")
    values = _Defaulting(shop_name=SHOP_NAME, shop_phone=SHOP_PHONE, business_hours=BUSINESS_HOURS)
    values.update({k: v for k, v in fields.items() if v not in (None, "")})
    return template.format_map(values)


def render_fallback(reason: str) -> str:
    template = FALLBACK_TEMPLATES.get(reason, FALLBACK_TEMPLATES["COOLDOWN_ACTIVE"])
    return template.format_map(
        _Defaulting(shop_name=SHOP_NAME, shop_phone=SHOP_PHONE, business_hours=BUSINESS_HOURS)
    )
