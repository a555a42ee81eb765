import pytest

from app.ai_feature import fallback
from app.ai_feature.conversation import Role, Session
from app.ai_feature.errors import InvalidInput, ModelCallError, SnapshotUnavailable
from app.ai_feature.llm_client import CodeGenerator, ResponseSynthesizer
from app.ai_feature.pipeline import Orchestrator, PipelineState


class StaticSnapshot:
    def __init__(self, data=None, broken=False):
        self.data = data or {
            "patients": [{"patient_id": "P001", "medications": "Insulin"}],
            "inventory": [
                {"drug_name": "Insulin", "quantity": 5},
                {"drug_name": "Metformin", "quantity": 250},
            ],
        }
        self.broken = broken

    async def snapshot(self):
        if self.broken:
            raise SnapshotUnavailable("database is down")
        return self.data

    async def counts(self):
        if self.broken:
            raise SnapshotUnavailable("database is down")
        return {table: len(rows) for table, rows in self.data.items()}


def _orchestrator(executor, fake_model=None, snapshot=None):
    generator = synthesizer = None
    if fake_model is not None:
        generator = CodeGenerator(fake_model)
        synthesizer = ResponseSynthesizer(fake_model)
    return Orchestrator(
        snapshot_provider=snapshot or StaticSnapshot(),
        executor=executor,
        generator=generator,
        synthesizer=synthesizer,
    )


def _assert_history_invariant(session):
    turns = session.store.all()
    assert len(turns) % 2 == 0
    for position, turn in enumerate(turns):
        expected = Role.USER if position % 2 == 0 else Role.ASSISTANT
        assert turn.role == expected
        if turn.generated_code is not None:
            assert turn.execution is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", "\n\t", None])
async def test_blank_query_is_rejected_without_recording(executor, query):
    """Empty or whitespace queries raise and leave the history untouched"""
    session = Session("s")
    with pytest.raises(InvalidInput):
        await _orchestrator(executor).handle(session, query)
    assert len(session.store) == 0


@pytest.mark.asyncio
async def test_full_pipeline_records_code_and_output(executor, fake_model):
    """A successful run walks every state and stores the code with its output"""
    fake_model.queue(
        "print([row['drug_name'] for row in inventory if row['quantity'] < 20])",
        "Insulin is below the reorder threshold.",
    )
    orchestrator = _orchestrator(executor, fake_model)
    session = Session("s")

    turn = await orchestrator.handle(session, "Which drugs are low?")

    assert turn.text == "Insulin is below the reorder threshold."
    assert turn.action == fallback.ANALYSIS_COMPLETE
    assert len(turn.suggestions) == 5
    assert turn.execution.success is True
    assert turn.execution.output == "['Insulin']"
    assert "['Insulin']" in fake_model.calls[1]["system"]
    assert orchestrator.last_trace.states == [
        PipelineState.GENERATING,
        PipelineState.EXECUTING,
        PipelineState.SYNTHESIZING,
        PipelineState.DONE,
    ]
    _assert_history_invariant(session)


@pytest.mark.asyncio
async def test_generation_failure_degrades_to_apology(executor, fake_model):
    """No code from the model still produces a recorded apology turn"""
    fake_model.queue(ModelCallError("APIConnectionError: Connection error."))
    orchestrator = _orchestrator(executor, fake_model)
    session = Session("s")

    turn = await orchestrator.handle(session, "Which drugs are low?")

    assert turn.action is None
    assert turn.text
    assert turn.generated_code is None and turn.execution is None
    assert turn.suggestions == fallback.RETRY_SUGGESTIONS
    assert PipelineState.FAILED in orchestrator.last_trace.states
    assert len(session.store) == 2


@pytest.mark.asyncio
async def test_execution_failure_is_explained(executor, fake_model):
    """A crashing script is explained by the synthesizer and not marked complete"""
    fake_model.queue("raise KeyError('stock')", "The data has no 'stock' column.")
    session = Session("s")

    turn = await _orchestrator(executor, fake_model).handle(session, "Show stock")

    assert turn.execution.success is False
    assert "KeyError" in turn.execution.error
    assert turn.text == "The data has no 'stock' column."
    assert turn.action is None
    assert "FAILED" in fake_model.calls[1]["system"]
    _assert_history_invariant(session)


@pytest.mark.asyncio
async def test_synthesis_failure_falls_back_to_raw_output(executor, fake_model):
    """Without a synthesized answer the raw output is shown"""
    fake_model.queue("print('2 items below threshold')", ModelCallError("RateLimitError"))
    orchestrator = _orchestrator(executor, fake_model)
    session = Session("s")

    turn = await orchestrator.handle(session, "How many are low?")

    assert turn.text == "2 items below threshold"
    assert turn.generated_code == "print('2 items below threshold')"
    assert orchestrator.last_trace.states[-2:] == [PipelineState.FAILED, PipelineState.DONE]


@pytest.mark.asyncio
async def test_synthesis_failure_without_output_uses_canned_text(executor, fake_model):
    """No output and no synthesis gives the canned apology"""
    fake_model.queue("import sys\nsys.exit(3)", ModelCallError("RateLimitError"))
    session = Session("s")

    turn = await _orchestrator(executor, fake_model).handle(session, "Anything?")

    assert turn.text == fallback.SYNTHESIS_APOLOGY
    assert turn.execution.success is False
    _assert_history_invariant(session)


@pytest.mark.asyncio
async def test_synthesis_failure_keeps_output_of_failed_run(executor, fake_model):
    """Output printed before a non-zero exit is shown rather than the apology"""
    code = "import sys\nprint('Insulin: 5 left')\nsys.exit(3)"
    fake_model.queue(code, ModelCallError("RateLimitError"))
    session = Session("s")

    turn = await _orchestrator(executor, fake_model).handle(session, "What is low?")

    assert turn.execution.success is False
    assert turn.text == "Insulin: 5 left"
    assert turn.action is None
    _assert_history_invariant(session)


@pytest.mark.asyncio
async def test_snapshot_failure_is_an_execution_failure(executor, fake_model):
    """An unreachable database counts as a failed execution"""
    fake_model.queue("print(1)", "The data could not be loaded.")
    orchestrator = _orchestrator(executor, fake_model, StaticSnapshot(broken=True))
    session = Session("s")

    turn = await orchestrator.handle(session, "Count items")

    assert turn.execution.success is False
    assert "database is down" in turn.execution.error
    assert turn.text == "The data could not be loaded."


@pytest.mark.asyncio
async def test_history_window_feeds_next_prompt(executor, fake_model):
    """Earlier turns appear in the next generation prompt"""
    fake_model.queue("print(5)", "There are 5.", "print(6)", "Now 6.")
    orchestrator = _orchestrator(executor, fake_model)
    session = Session("s")

    await orchestrator.handle(session, "first question")
    await orchestrator.handle(session, "second question")

    second_prompt = fake_model.calls[2]["system"]
    assert "user: first question\nassistant: There are 5." in second_prompt
    assert len(session.store) == 4
    _assert_history_invariant(session)


@pytest.mark.asyncio
async def test_fallback_mode_answers_from_keywords(executor):
    """Without a model, keywords pick the answer"""
    session = Session("s")
    turn = await _orchestrator(executor).handle(session, "inventory")

    assert "low stock" in turn.text
    assert len(turn.suggestions) == 5
    assert turn.action == fallback.ANALYSIS_COMPLETE
    assert [t.role for t in session.store.all()] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_fallback_report_uses_row_counts(executor):
    """The static report is built from row counts and not recorded"""
    session = Session("s")
    report = await _orchestrator(executor).generate_report(session)

    assert "Total Patients: 1" in report
    assert "Total Inventory Items: 2" in report
    assert len(session.store) == 0


@pytest.mark.asyncio
async def test_report_runs_pipeline_in_model_mode(executor, fake_model):
    """With a model the report goes through the normal pipeline"""
    fake_model.queue("print('summary')", "# Report\nAll good.")
    session = Session("s")

    report = await _orchestrator(executor, fake_model).generate_report(session)

    assert report == "# Report\nAll good."
    assert session.store.all()[0].text == fallback.REPORT_QUERY
