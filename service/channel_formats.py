"""
Channel / Format compatibility table
Repairs (channel, format) pairs proposed by the LLM so every campaign uses a
format its channel actually sells. The first format listed is the default.
"""

import json
import logging
import os
from typing import Dict, Tuple, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_FORMATS: Dict[str, Tuple[str, ...]] = {
    'Google Ads': ('Search', 'Display', 'Performance Max', 'Discovery', 'Shopping'),
    'YouTube Ads': ('In-Stream', 'Bumper', 'In-Feed', 'Shorts'),
    'Meta Ads': ('Feed', 'Stories', 'Reels', 'Carousel', 'Lead Ads'),
    'Instagram Ads': ('Feed', 'Stories', 'Reels', 'Explore'),
    'LinkedIn Ads': ('Sponsored Content', 'Message Ads', 'Text Ads', 'Lead Gen Forms'),
    'TikTok Ads': ('In-Feed', 'TopView', 'Spark Ads'),
    'Pinterest Ads': ('Standard Pin', 'Video Pin', 'Carousel'),
    'X Ads': ('Promoted Posts', 'Video', 'Takeover'),
    'Programmatic': ('Display', 'Video', 'Native', 'Audio'),
}

# Used when the channel itself is unknown
FALLBACK_FORMAT = 'Display'


def load_channel_formats(path: Optional[str] = None) -> Dict[str, Tuple[str, ...]]:
    """
    Load the channel/format table

    Reads a JSON object {"Channel": ["Format", ...]} from path (or the
    CHANNEL_FORMATS_PATH environment variable). Falls back to the built-in
    table when no file is configured or the file is unusable.
    """
    path = path or os.getenv('CHANNEL_FORMATS_PATH')
    if not path:
        return dict(DEFAULT_CHANNEL_FORMATS)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"❌ Could not load channel formats from {path}: {e} - using built-in table")
        return dict(DEFAULT_CHANNEL_FORMATS)

    if not isinstance(raw, dict):
        logger.error(f"❌ Channel formats file {path} must hold a JSON object - using built-in table")
        return dict(DEFAULT_CHANNEL_FORMATS)

    table = {}
    for channel, formats in raw.items():
        if isinstance(formats, list) and formats and all(isinstance(f, str) for f in formats):
            table[channel] = tuple(formats)
        else:
            logger.warning(f"⚠️ Ignoring channel '{channel}' with invalid format list: {formats}")

    if not table:
        logger.warning(f"⚠️ Channel formats file {path} has no usable entries - using built-in table")
        return dict(DEFAULT_CHANNEL_FORMATS)

    logger.info(f"✅ Loaded {len(table)} channels from {path}")
    return table


CHANNEL_FORMATS = load_channel_formats()


def _find_channel(channel: str, table: Mapping[str, Tuple[str, ...]]) -> Optional[str]:
    if channel in table:
        return channel
    wanted = (channel or '').strip().lower()
    for name in table:
        if name.lower() == wanted:
            return name
    return None


def validate_format(channel: str, format_name: str,
                    table: Mapping[str, Tuple[str, ...]] = None) -> str:
    """
    Return a format that is valid for the channel

    Args:
        channel: Channel name (matched case-insensitively)
        format_name: Proposed format
        table: Channel/format table (defaults to CHANNEL_FORMATS)

    Returns:
        format_name if the channel lists it, else the channel's default
        format, else FALLBACK_FORMAT for unknown channels
    """
    table = CHANNEL_FORMATS if table is None else table

    channel_key = _find_channel(channel, table)
    if channel_key is None:
        logger.debug(f"[FORMAT] Unknown channel '{channel}' → {FALLBACK_FORMAT}")
        return FALLBACK_FORMAT

    allowed = table[channel_key]
    if format_name in allowed:
        return format_name

    wanted = (format_name or '').strip().lower()
    for allowed_format in allowed:
        if allowed_format.lower() == wanted:
            return allowed_format

    logger.debug(f"[FORMAT] '{format_name}' not sold on {channel_key} → {allowed[0]}")
    return allowed[0]
