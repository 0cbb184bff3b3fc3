"""Constants for the Frank Energie Battery integration."""

DOMAIN = "frank_energie_battery"
DEFAULT_NAME = "Frank Energie Battery"

# Configuration keys
CONF_AUTH_TOKEN = "auth_token"
CONF_REFRESH_TOKEN = "refresh_token"
CONF_BATTERIES = "batteries"
CONF_SCAN_INTERVAL = "scan_interval"
CONF_TIME_ZONE = "time_zone"
CONF_CONFIG_ENTRY_ID = "config_entry_id"

# Battery dict keys
CONF_BATTERY_ID = "id"
CONF_BATTERY_NAME = "name"

# Defaults
DEFAULT_SCAN_INTERVAL = 15  # minutes
DEFAULT_TIME_ZONE = "Europe/Amsterdam"
REQUEST_TIMEOUT = 30

# Remote API
GRAPHQL_URL = "https://graphql.frankenergie.nl/"
USER_AGENT = "HomeAssistant/FrankEnergieBattery"

# Services
SERVICE_RECORD_CUMULATIVE = "record_cumulative"
SERVICE_RECORD_DAILY = "record_daily"
SERVICE_EMERGENCY_RESET = "emergency_reset"
SERVICE_SCHEDULE_RESET = "schedule_reset"
SERVICE_REMOVE_BATTERY = "remove_battery"
SERVICE_CLEAR_BATTERIES = "clear_batteries"
SERVICE_REFRESH_RESULTS = "refresh_results"

ATTR_BATTERY_ID = "battery_id"
ATTR_CHARGED = "charged"
ATTR_DISCHARGED = "discharged"
ATTR_PERCENTAGE = "percentage"
ATTR_AT = "at"

# Fired with the closing day's totals whenever an accounting day ends
EVENT_DAILY_TOTALS = f"{DOMAIN}_daily_totals"

# Trading modes derived from the primary battery's settings
TRADING_MODE_IMBALANCE = "imbalance"
TRADING_MODE_IMBALANCE_AGGRESSIVE = "imbalance_aggressive"
TRADING_MODE_SELF_CONSUMPTION_PLUS = "self_consumption_plus"
TRADING_MODE_MANUAL = "manual"
TRADING_MODES = [
    TRADING_MODE_IMBALANCE,
    TRADING_MODE_IMBALANCE_AGGRESSIVE,
    TRADING_MODE_SELF_CONSUMPTION_PLUS,
    TRADING_MODE_MANUAL,
]
