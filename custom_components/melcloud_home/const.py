"""Constants for MELCloud Home integration.

This module contains all the constants used throughout the integration,
including API endpoints, configuration keys, setting names and limits.
"""

DOMAIN = "melcloud_home"
MANUFACTURER = "Mitsubishi Electric"

TOKEN_URL = "https://auth.melcloudhome.com/connect/token"
BASE_URL = "https://mobile.bff.melcloudhome.com"
USER_AGENT = "MonitorAndControl.App.Mobile/35 CFNetwork/3860.100.1 Darwin/25.0.0"
# Base64 of "homemobile:" (mobile app client id with an empty secret)
CLIENT_AUTH = "Basic aG9tZW1vYmlsZTo="

REQUEST_TIMEOUT = 10.0
MAX_RESPONSE_SIZE = 1024 * 1024
MAX_RETRIES = 3
RETRY_BACKOFF_FACTOR = 0.5
TOKEN_EXPIRY_BUFFER = 300

DEFAULT_POLL_INTERVAL = 60
MIN_POLL_INTERVAL = 10
MAX_POLL_INTERVAL = 3600

VERIFICATION_DELAY = 2.0
POWER_VERIFICATION_DELAY = 0.3
VERIFICATION_SAFETY_TIMEOUT = 5.0
THRESHOLD_OFFSET = 2.0
DEFAULT_TEMPERATURE = 20.0
MIN_SANE_TEMPERATURE = -40.0
MAX_SANE_TEMPERATURE = 60.0

CONF_REFRESH_TOKEN = "refresh_token"
CONF_POLL_INTERVAL = "poll_interval"
CONF_DEBUG = "debug"
CONF_FAN_SPEED_BUTTONS = "fan_speed_buttons"
CONF_VANE_BUTTONS = "vane_buttons"

ERROR_INVALID_AUTH = "invalid_auth"
ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_API_ERROR = "api_error"
ERROR_UNKNOWN = "unknown_error"

SETTING_POWER = "Power"
SETTING_OPERATION_MODE = "OperationMode"
SETTING_FAN_SPEED = "SetFanSpeed"
SETTING_VANE_VERTICAL = "VaneVerticalDirection"
SETTING_VANE_HORIZONTAL = "VaneHorizontalDirection"
SETTING_SET_TEMPERATURE = "SetTemperature"
SETTING_ROOM_TEMPERATURE = "RoomTemperature"

MODE_HEAT = "Heat"
MODE_COOL = "Cool"
MODE_AUTO = "Auto"
MODE_DRY = "Dry"
MODE_FAN = "Fan"

FAN_SPEED_AUTO = "Auto"
VANE_AUTO = "Auto"
VANE_SWING = "Swing"

# Both encodings the vendor API uses for the same fan speed
FAN_SPEED_TOKENS = {
    "0": "Auto",
    "1": "One",
    "2": "Two",
    "3": "Three",
    "4": "Four",
    "5": "Five",
}
FAN_SPEED_LEVELS = {token: int(level) for level, token in FAN_SPEED_TOKENS.items()}

VANE_POSITION_TOKENS = {
    "0": "Auto",
    "1": "One",
    "2": "Two",
    "3": "Three",
    "4": "Four",
    "5": "Five",
    "6": "Swing",
    "Six": "Swing",
    "7": "Swing",
}

# Button key -> (API token, display name)
FAN_SPEED_BUTTONS = {
    "auto": ("Auto", "Auto"),
    "quiet": ("One", "Quiet"),
    "2": ("Two", "2"),
    "3": ("Three", "3"),
    "4": ("Four", "4"),
    "max": ("Five", "Max"),
}
VANE_BUTTONS = {
    "auto": ("Auto", "Auto"),
    "swing": ("Swing", "Swing"),
}
