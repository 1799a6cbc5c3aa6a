import pytest

from genmux.types import Message, Response, Usage
from genmux.usage import UsageTracker, cost_info


def response(usage=None, model="m-1"):
    return Response(message=Message(role="assistant", content="x"), provider="test", model=model, usage=usage)


class TestUsageTracker:
    def test_nothing_reported(self):
        tracker = UsageTracker()
        tracker.add(response())
        tracker.add(response())
        assert tracker.total() is None

    def test_partial_reports_are_summed(self):
        tracker = UsageTracker()
        tracker.add(response(Usage(input_tokens=10, output_tokens=5)))
        tracker.add(response())
        tracker.add(response(Usage(input_tokens=3, output_tokens=2)))

        total = tracker.total()
        assert total.input_tokens == 13
        assert total.output_tokens == 7
        assert total.total_tokens == 20
        assert total.cost is None
        assert len(total.raw["turns"]) == 3

    def test_pricing_estimate(self):
        tracker = UsageTracker({"m-1": (2.0, 8.0)})
        tracker.add(response(Usage(input_tokens=1_000_000, output_tokens=500_000)))
        assert tracker.total().cost == pytest.approx(6.0)

    def test_reported_cost_wins(self):
        tracker = UsageTracker({"m-1": (2.0, 8.0)})
        tracker.add(response(Usage(input_tokens=1_000_000, output_tokens=0, cost=0.5)))
        assert tracker.total().cost == 0.5

    def test_unpriced_model(self):
        tracker = UsageTracker({"other": (1.0, 1.0)})
        assert tracker.estimate_cost("m-1", Usage(input_tokens=1, output_tokens=1)) is None


def test_cost_info():
    assert cost_info("m-1", None) is None
    assert cost_info("m-1", Usage(input_tokens=1, output_tokens=2, cost=0.3)) == {
        "model": "m-1",
        "prompt_tokens": 1,
        "completion_tokens": 2,
        "total_tokens": 3,
        "cost": 0.3,
    }
