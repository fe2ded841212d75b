from codestudio.context import estimate_size, limit_history, prune_messages
from codestudio.schemas import ConversationMessage


def _msg(role: str, content: str) -> ConversationMessage:
    return ConversationMessage(role=role, content=content)


def test_short_lists_are_returned_unchanged():
    msgs = [_msg("user", "a" * 5000), _msg("model", "b" * 5000)]
    assert prune_messages(msgs, 10) == msgs


def test_keeps_anchor_and_last_and_newest_interior_that_fit():
    msgs = [_msg("user", str(i) * 100) for i in range(6)]
    size = estimate_size(msgs[0])
    pruned = prune_messages(msgs, size * 4)
    assert pruned[0] is msgs[0]
    assert pruned[-1] is msgs[-1]
    assert pruned == [msgs[0], msgs[3], msgs[4], msgs[5]]


def test_stops_at_first_interior_message_that_does_not_fit():
    msgs = [_msg("user", "x"), _msg("model", "small"), _msg("model", "y" * 1000), _msg("model", "tiny"), _msg("user", "z")]
    budget = sum(estimate_size(m) for m in (msgs[0], msgs[1], msgs[3], msgs[4]))
    pruned = prune_messages(msgs, budget)
    # The older small message would fit but sits behind the oversized one.
    assert pruned == [msgs[0], msgs[3], msgs[4]]


def test_total_stays_within_budget_when_anchor_and_last_fit():
    msgs = [_msg("user", "q" * 50) for _ in range(20)]
    budget = 700
    pruned = prune_messages(msgs, budget)
    assert sum(estimate_size(m) for m in pruned) <= budget


def test_pruning_is_idempotent():
    msgs = [_msg("user", str(i) * 300) for i in range(12)]
    once = prune_messages(msgs, 2000)
    assert prune_messages(once, 2000) == once


def test_custom_size_function():
    msgs = ["a", "b", "c", "d"]
    assert prune_messages(msgs, 3, size_of=lambda _: 1) == ["a", "c", "d"]


def test_limit_history_drops_system_and_blank_messages():
    msgs = [
        _msg("user", "one"),
        _msg("system", "[PLANNING INSTRUCTION]: x"),
        _msg("model", ""),
        _msg("model", "two"),
        _msg("user", "three"),
    ]
    assert [m.content for m in limit_history(msgs, 2)] == ["two", "three"]
    assert limit_history(msgs, 0) == []
