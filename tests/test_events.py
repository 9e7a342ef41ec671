"""Tests for the proposal channel."""

from pharma_twin_sim.events import Channel, ProposalChannel


def test_delivers_in_subscription_order():
    channel = Channel()
    seen = []
    channel.subscribe(lambda e: seen.append(("a", e)))
    channel.subscribe(lambda e: seen.append(("b", e)))

    assert channel.publish(1) == 2
    assert seen == [("a", 1), ("b", 1)]


def test_failing_listener_is_isolated():
    channel = Channel()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(seen.append)

    assert channel.publish("x") == 1
    assert seen == ["x"]


def test_unsubscribe():
    channel = ProposalChannel()
    seen = []
    unsubscribe = channel.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    channel.publish("x")

    assert seen == []
    assert len(channel) == 0
    assert channel.name == "proposals"
