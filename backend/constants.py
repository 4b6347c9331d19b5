"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for the timing and sizing rules of the voice
command pipeline.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (URLs, tokens, overrides) live in config.py.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Wake word
# =============================================================================

WAKE_WORD_DEFAULT: Final[str] = "polly"

# How long the assistant stays AWAKE after the wake word with no activity
WAKE_WORD_TIMEOUT_MS_DEFAULT: Final[int] = 10_000

# Characters stripped between the wake word and the command text
WAKE_WORD_SEPARATOR_CHARS: Final[str] = " ,.!?;:-"

# =============================================================================
# Partial-result promotion
# =============================================================================

USE_PARTIAL_RESULTS_DEFAULT: Final[bool] = True

# Silence after the last partial before it is promoted to a boundary
PARTIAL_TIMEOUT_MS_DEFAULT: Final[int] = 1_000

# Suffix appended to an utterance id when a partial is promoted
PROMOTED_PARTIAL_ID_SUFFIX: Final[str] = "#partial"

# =============================================================================
# Duplicate-finalization guard
# =============================================================================

# seen_utterance_ids is capped; oldest ids are evicted past this size
SEEN_UTTERANCE_IDS_MAX: Final[int] = 100

# =============================================================================
# Continuation detection
# =============================================================================

# Growth (in characters) tolerated before new text counts as a continuation
CONTINUATION_LENGTH_SLACK_CHARS: Final[int] = 10

# =============================================================================
# Rollback
# =============================================================================

# Recorded states that mean "deactivated"
INACTIVE_STATES: Final[frozenset[str]] = frozenset({"off", "standby"})

# Recorded states that carry no restorable information
UNRESTORABLE_STATES: Final[frozenset[str]] = frozenset({"unavailable", "unknown"})

# Light color modes, by the attribute that restores them
LIGHT_COLOR_TEMP_MODES: Final[frozenset[str]] = frozenset({"color_temp"})
LIGHT_RGB_MODES: Final[frozenset[str]] = frozenset({"hs", "rgb", "xy", "rgbw", "rgbww"})

# =============================================================================
# Home Assistant REST
# =============================================================================

HOME_ASSISTANT_URL_DEFAULT: Final[str] = "http://homeassistant.local:8123"
HA_CONNECT_TIMEOUT_S: Final[float] = 5.0
HA_READ_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# LLM tool loop
# =============================================================================

LLM_MAX_STEPS: Final[int] = 5
LLM_TEMPERATURE: Final[float] = 0.1
CONVERSATION_HISTORY_MAX_MESSAGES: Final[int] = 10

# =============================================================================
# Home control tools
# =============================================================================

# Named color temperatures (Kelvin)
COLOR_TEMPERATURE_KELVIN: Final[dict[str, int]] = {
    "warm white": 2700,
    "soft white": 3000,
    "warm": 3000,
    "neutral white": 4000,
    "neutral": 4000,
    "cool white": 5000,
    "cool": 5000,
    "daylight": 6500,
    "cold": 6500,
}

# Named colors (RGB)
COLOR_RGB: Final[dict[str, Tuple[int, int, int]]] = {
    "red": (255, 0, 0),
    "green": (0, 255, 0),
    "blue": (0, 0, 255),
    "white": (255, 255, 255),
    "yellow": (255, 255, 0),
    "orange": (255, 165, 0),
    "purple": (128, 0, 128),
    "pink": (255, 192, 203),
    "cyan": (0, 255, 255),
    "magenta": (255, 0, 255),
    "indigo": (75, 0, 130),
    "violet": (238, 130, 238),
    "turquoise": (64, 224, 208),
    "coral": (255, 127, 80),
    "gold": (255, 215, 0),
}

MEDIA_PLAYER_ACTIONS: Final[dict[str, str]] = {
    "turn_on": "turn_on",
    "turn_off": "turn_off",
    "play": "media_play",
    "pause": "media_pause",
    "play_pause": "media_play_pause",
    "stop": "media_stop",
    "next_track": "media_next_track",
    "previous_track": "media_previous_track",
}

CLIMATE_STATES: Final[Tuple[str, ...]] = ("on", "off", "heat", "cool", "auto", "heat_cool")
TEMPERATURE_MIN_C: Final[int] = 10
TEMPERATURE_MAX_C: Final[int] = 35

# =============================================================================
# HTTP server
# =============================================================================

HTTP_SERVER_PORT_DEFAULT: Final[int] = 3001
HTTP_CHANNEL: Final[str] = "http"
