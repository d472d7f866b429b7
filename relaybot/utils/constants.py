"""
relaybot/utils/constants.py

Purpose: Centralized static content

- All user-facing and admin-facing messages
- Button labels and callback prefixes
- Limits imposed by the Bot API

(Prevents hardcoding across the codebase)
"""

# ============================================================
# BOT API LIMITS
# ============================================================

TOPIC_NAME_MAX_LENGTH = 128
CAPTION_HARD_LIMIT = 1024
CAPTION_SAFE_LIMIT = 1000  # cards longer than this go out as plain text

# ============================================================
# RELAY
# ============================================================

MAX_TOPIC_RECOVERIES = 1

PLACEHOLDER_TEXT = "✨ Loading user profile..."
DELIVERED_ACK = "✅ Delivered"
ERROR_SYSTEM_BUSY = "The system is busy, please try again later."
ERROR_DELIVERY_FAILED = "❌ Delivery failed, please try again later."

QUOTE_MARKERS = (">", "》", "&gt;")

# ============================================================
# PROFILE CARD
# ============================================================

CARD_TITLE = "🪪 User profile"
UNNAMED_USER = "Unnamed user"
NO_USERNAME = "no username"
CARD_TIME_FORMAT = "%Y/%m/%d %H:%M:%S"

BUTTON_BLOCK = "🚫 Block"
BUTTON_UNBLOCK = "✅ Unblock"
BUTTON_NOTE = "📝 Note"
BUTTON_PIN = "📌 Pin card"

# ============================================================
# VERIFICATION
# ============================================================

VERIFY_FIRST = "❗️❗️❗️ Please complete verification before sending messages."
WARN_COOLDOWN_SECONDS = 3.0

WELCOME_FALLBACK = "Welcome!"
DEFAULT_FIRST_NAME = "user"

CAPTCHA_PROMPT = "🛡️ <b>Security check</b>\nTap the button below to complete the captcha and continue."
CAPTCHA_BUTTON = "Verify"
QA_PROMPT = "❓ <b>Security question</b>\nPlease answer:\n"
CAPTCHA_PASSED_QA = "✅ Verification passed!\nPlease answer:\n"
VERIFIED_MESSAGE = "✅ Verification passed!\nYou can now send messages and they will be relayed to the admins."
WRONG_ANSWER = "❌ Wrong answer"

TURNSTILE_SCRIPT = "https://challenges.cloudflare.com/turnstile/v0/api.js"
TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
RECAPTCHA_SCRIPT = "https://www.google.com/recaptcha/api.js"
RECAPTCHA_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"

# ============================================================
# INBOX FILTERS
# ============================================================

BLOCKED_NOTICE = "❌ You have been blocked (send /start to request an unblock)"
KEYWORD_STRIKE = "⚠️ Blocked keyword ({count}/{limit})"
CONTENT_NOT_ACCEPTED = "⚠️ {label} are not accepted"
BUSY_PREFIX = "🌙 "
BUSY_REPLY_INTERVAL_SECONDS = 300
AUTO_REPLY_PREFIX = "Auto reply:\n"

# ============================================================
# ADMIN SIDE
# ============================================================

ADMIN_HELP = "ℹ️ <b>Help</b>\n• Reply inside a user topic to answer them\n• /start opens the control panel"
ADMIN_REPLIED = "✅ Replied"
ADMIN_REPLY_FAILED = "❌ Delivery failed"
ADMIN_EDIT_NOTICE = "✏️ <b>The other side edited a message</b>\nContent: {text}"
USER_EDIT_LOG = "✏️ Message edited\nBefore: {old}\nAfter: {new}"
MEDIA_PLACEHOLDER = "[media]"
NON_TEXT_PLACEHOLDER = "[non-text]"

NOTE_PROMPT = "⌨️ Reply with the note text (/clear to remove):"
NOTE_UPDATED = "✅ Note updated"
NOTE_CLEAR_COMMANDS = ("/clear", "清除")

BLOCKLIST_TOPIC_NAME = "🚫 Blocklist"
BLOCKLIST_ENTRY_TITLE = "<b>🚫 User blocked</b>"
USER_BLOCKED = "❌ Blocked"
USER_UNBLOCKED = "✅ Unblocked"

BACKUP_HEADER = "<b>📨 Backup</b> {name} ({user_id})"

# ============================================================
# ADMIN PANEL
# ============================================================

BUTTON_BACK = "🔙 Back"
PANEL_TITLE = "⚙️ <b>Control panel</b>"
PANEL_NO_PERMISSION = "No permission"
PANEL_ERROR = "Error"
INPUT_CANCEL = "/cancel"
AUTO_REPLY_SEPARATOR = "==="
AUTO_REPLY_FORMAT_ERROR = "❌ Wrong format, use: keyword===reply"
WELCOME_MEDIA_LABEL = "[media config]"

COMMAND_START_USER = "Start"
COMMAND_START_ADMIN = "⚙️ Control panel"
COMMAND_HELP_ADMIN = "📄 Help"

PANEL_BASE = "📝 Base"
PANEL_AUTO_REPLY = "🤖 Auto reply"
PANEL_KEYWORDS = "🚫 Keywords"
PANEL_FILTERS = "🛠 Filters"
PANEL_ADMINS = "👮 Admins"
PANEL_BACKUP = "💾 Backup/alerts"
PANEL_BUSY = "🌙 Busy mode"

BASE_TITLE = "Base settings\nCaptcha: {captcha}\nQuestion check: {qa}"
BUTTON_WELCOME = "Welcome"
BUTTON_QUESTION = "Question"
BUTTON_ANSWER = "Answer"
BUTTON_CAPTCHA_MODE = "Captcha: {captcha} (tap to switch)"
BUTTON_QA_TOGGLE = "Question check: {state}"
CAPTCHA_LABELS = {"turnstile": "Cloudflare", "recaptcha": "Google"}
CAPTCHA_OFF = "❌ Off"
CAPTCHA_SWITCHED = "Switched: {label}"
CAPTCHA_DISABLED = "Captcha disabled"

FILTERS_TITLE = "🛠 <b>Filters</b>"
FILTER_LABELS = (
    ("Receipt", "enable_admin_receipt"),
    ("Forwards", "enable_forward_forwarding"),
    ("Media", "enable_image_forwarding"),
    ("Audio", "enable_audio_forwarding"),
    ("Stickers", "enable_sticker_forwarding"),
    ("Links", "enable_link_forwarding"),
    ("Channels", "enable_channel_forwarding"),
    ("Text", "enable_text_forwarding"),
)

LIST_TITLE = "List: {name}"
BUTTON_LIST_DELETE = "🗑 {item}"
BUTTON_LIST_ADD = "➕ Add"

BACKUP_TITLE = "💾 <b>Backup and alerts</b>\nBackup chat: {backup}\nBlocklist topic: {blocklist}"
BUTTON_SET_BACKUP = "Set backup chat"
BUTTON_CLEAR_BACKUP = "Clear backup"
BUTTON_RESET_BLOCKLIST = "Reset blocklist"

BUSY_TITLE = "🌙 <b>Busy mode</b>\nNow: {status}\nReply: {message}"
BUSY_ON = "🔴 Away"
BUSY_OFF = "🟢 Available"
BUTTON_BUSY_SWITCH = "Switch to {status}"
BUTTON_BUSY_MESSAGE = "✏️ Edit reply"

INPUT_PROMPT = "Send the new value for {key} (/cancel to abort):"
AUTO_REPLY_PROMPT = "Send an auto-reply rule as:\n<b>keyword===reply</b>\n\nExample: price===Please contact support\n(/cancel to abort)"
WELCOME_PROMPT = (
    "Send the new welcome message (/cancel to abort):\n\n"
    "• <b>Text</b> or <b>photo/video/GIF</b> are accepted\n"
    "• Placeholder: {name}\n"
    "• Just send the media"
)
INPUT_SAVED = "✅ {key} updated:\n{value}"
