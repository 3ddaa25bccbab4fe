"""
Shared constants for the Wooligotchi core.

This module provides a single source of truth for the simulation tuning,
ledger caps and storage keys used across multiple modules.
"""

# Needs decay (units per minute)
HUNGER_DECAY_PER_MIN = 1.0
HYGIENE_DECAY_PER_MIN = 0.8
FUN_DECAY_PER_MIN = 1.2
ENERGY_DECAY_PER_MIN = 0.6
SLEEP_ENERGY_GAIN_PER_MIN = 20.0
WASTE_HYGIENE_MULTIPLIER = 1.6

# Health reacts to the consumable needs
HEALTH_DECAY_PER_MIN = 2.0
HEALTH_RECOVERY_PER_MIN = 5.0
DISTRESS_THRESHOLDS = {
    "hunger": 20.0,
    "hygiene": 20.0,
    "fun": 15.0,
    "energy": 10.0,
}
SICKNESS_THRESHOLD = 30.0
RECOVERY_THRESHOLD = 60.0

# Random waste appearance
WASTE_CHANCE_PER_MIN = 0.02

# Action effects
FEED_BONUS = 40.0
PLAY_BONUS = 35.0
PLAY_ENERGY_COST = 10.0
CLEAN_BONUS = 45.0
HEAL_BONUS = 40.0

DEFAULT_NEEDS = {
    "hunger": 80.0,
    "hygiene": 80.0,
    "fun": 80.0,
    "energy": 80.0,
    "health": 100.0,
}
REVIVE_BASELINE = 60.0

# Loop timing
DEFAULT_TICK_MS = 250
DEFAULT_POLL_INTERVAL_SECONDS = 60.0

# Lives
PENDING_LIFE_TTL_SECONDS = 15 * 60

# WOOL rewards
DAILY_CAP = 10
COLLECT_COOLDOWN_SECONDS = 0.15
ADULT_STAGE = "adult"

# Durable storage keys (one blob per concern)
PET_SAVE_PREFIX = "pet_save"
LIVES_KEY = "wg_lives_v1"
PENDING_LIFE_KEY = "wg_pending_life"
WOOL_PREFIX = "wg_wool_v1"

# Chain defaults (Monad testnet)
DEFAULT_CHAIN_ID = 10143
DEFAULT_NFT_CONTRACT = "0x88c78d5852f45935324c6d100052958f694e8446"
