"""
Test Step Pipeline

Failure isolation, expected denials and step wiring.
"""

import pytest

from data_wallet.core.errors import Unauthorized
from data_wallet.core.pipeline import Pipeline, Step, StepStatus


async def _value(results):
    return "value"


class TestPipelineWiring:
    """Tests for step declaration"""

    def test_duplicate_step_rejected(self):
        pipeline = Pipeline("test")
        pipeline.add(Step("a", _value))
        with pytest.raises(ValueError):
            pipeline.add(Step("a", _value))

    def test_undeclared_requirement_rejected(self):
        pipeline = Pipeline("test")
        with pytest.raises(ValueError):
            pipeline.add(Step("b", _value, requires=("a",)))


class TestPipelineRun:
    """Tests for running pipelines"""

    @pytest.mark.asyncio
    async def test_step_receives_only_its_requirements(self):
        pipeline = Pipeline("test")
        seen = {}

        @pipeline.step("a")
        async def a(results):
            return 1

        @pipeline.step("b")
        async def b(results):
            return 2

        @pipeline.step("c", requires=["b"])
        async def c(results):
            seen.update(results)
            return results["b"] + 1

        report = await pipeline.run()
        assert seen == {"b": 2}
        assert report.get("c").value == 3
        assert report.ok

    @pytest.mark.asyncio
    async def test_failure_skips_dependents_only(self):
        pipeline = Pipeline("test")

        @pipeline.step("broken")
        async def broken(results):
            raise RuntimeError("boom")

        @pipeline.step("dependent", requires=["broken"])
        async def dependent(results):
            return "never"

        @pipeline.step("independent")
        async def independent(results):
            return "ran"

        report = await pipeline.run()

        assert report.get("broken").status == StepStatus.FAILED
        assert isinstance(report.get("broken").error, RuntimeError)
        assert report.get("dependent").status == StepStatus.SKIPPED
        assert report.get("dependent").blocked_by == ["broken"]
        assert report.get("independent").status == StepStatus.SUCCEEDED
        assert not report.ok

    @pytest.mark.asyncio
    async def test_expected_error_is_ok(self):
        pipeline = Pipeline("test")

        @pipeline.step("deny", expect_error=Unauthorized)
        async def deny(results):
            raise Unauthorized("not on the whitelist")

        report = await pipeline.run()
        assert report.get("deny").status == StepStatus.DENIED_AS_EXPECTED
        assert report.ok

    @pytest.mark.asyncio
    async def test_missing_expected_error_is_a_fault(self):
        pipeline = Pipeline("test")

        @pipeline.step("deny", expect_error=Unauthorized)
        async def deny(results):
            return b"plaintext"

        report = await pipeline.run()
        assert report.get("deny").status == StepStatus.UNEXPECTED_SUCCESS
        assert not report.ok

    @pytest.mark.asyncio
    async def test_other_error_is_a_failure(self):
        pipeline = Pipeline("test")

        @pipeline.step("deny", expect_error=Unauthorized)
        async def deny(results):
            raise ValueError("malformed")

        report = await pipeline.run()
        assert report.get("deny").status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_denied_step_does_not_feed_dependents(self):
        pipeline = Pipeline("test")

        @pipeline.step("deny", expect_error=Unauthorized)
        async def deny(results):
            raise Unauthorized("no")

        @pipeline.step("after", requires=["deny"])
        async def after(results):
            return results["deny"]

        report = await pipeline.run()
        assert report.get("after").status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_counts(self):
        pipeline = Pipeline("test")
        pipeline.add(Step("a", _value))

        report = await pipeline.run()
        counts = report.counts()
        assert counts["succeeded"] == 1
        assert counts["failed"] == 0
        assert [r.name for r in report.with_status(StepStatus.SUCCEEDED)] == ["a"]
