from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pulsewire.sources.cursor import (
    TWITTER_EPOCH_MS,
    Cursor,
    build_backfill_query,
    build_live_query,
    decrement_snowflake_id,
    id_greater,
    id_less,
    snowflake_to_datetime,
)


def test_decrement_handles_values_beyond_64_bits():
    assert decrement_snowflake_id("1000000000000000000000") == "999999999999999999999"
    assert decrement_snowflake_id("1") == "0"


def test_decrement_leaves_zero_and_garbage_alone():
    assert decrement_snowflake_id("0") == "0"
    assert decrement_snowflake_id("abc") == "abc"


def test_query_anchoring():
    assert build_backfill_query("foo", None) == "foo"
    assert build_backfill_query("foo", "105") == "foo max_id:104"
    assert build_live_query("foo", None) == "foo"
    assert build_live_query("foo", "202") == "foo since_id:202"


def test_comparison_is_numeric_not_lexical():
    assert id_greater("100", "99")
    assert id_less("99", "100")
    assert id_greater("5", None)
    assert not id_greater("abc", "1")


def test_cursor_moves_both_frontiers():
    cursor = Cursor()

    assert cursor.observe("99")
    assert cursor.observe("100")
    assert not cursor.observe("99")
    assert cursor.observe("7")

    assert cursor.most_recent_id == "100"
    assert cursor.oldest_seen_id == "7"


def test_cursor_ignores_non_numeric_ids():
    cursor = Cursor(most_recent_id="10")

    assert not cursor.observe("-100123-5x")
    assert cursor.to_dict() == {"most_recent_id": "10", "oldest_seen_id": None}


def test_cursor_copy_is_independent():
    cursor = Cursor("10", "5")
    copy = cursor.copy()
    copy.observe("20")

    assert cursor.most_recent_id == "10"
    assert copy.most_recent_id == "20"


def test_snowflake_timestamp():
    snowflake = str(1_000_000 << 22)
    expected = datetime.fromtimestamp((TWITTER_EPOCH_MS + 1_000_000) / 1000, tz=timezone.utc)

    assert snowflake_to_datetime(snowflake) == expected
    assert snowflake_to_datetime("abc") is None
