import pytest

import gridlens.models.pipeline as mp
from gridlens.errors import GridLensError, QueryError
from gridlens.models.pipeline import QueryPipeline, apply, steps_key
from gridlens.models.table import Table
from gridlens.models.transforms import PipelineContext, Transform


def _base():
    return Table.from_rows(
        ["id", "name", "score"],
        [
            (1, "Ann", 72.5),
            (2, "Bob", 40.0),
            (3, "Cid", 88.0),
            (4, "Dee", 72.5),
            (5, "Eve", 51.0),
            (6, "Fay", 12.0),
            (7, "Gus", 88.0),
            (8, "Hal", 50.0),
            (9, "Ivy", 95.5),
            (10, "Jon", 60.0),
        ],
    )


FILTER = Transform("filter", {"where": "score > 50"})
ORDER = Transform("order", {"keys": [["score", "desc"]]})
SELECT = Transform("select", {"columns": ["id", "name"]})


def _settle(pipe, request):
    """Evaluate a pending request synchronously and install it."""
    if request is not None:
        assert pipe.install(request.generation, request.steps, request.evaluate())


def test_filter_then_order_scenario():
    out = apply(_base(), [FILTER, ORDER])
    assert list(out.column("id").values) == [9, 3, 7, 1, 4, 10, 5]
    assert all(s > 50 for s in out.column("score").values)


def test_select_keeps_order_and_count():
    before = apply(_base(), [FILTER, ORDER])
    after = apply(_base(), [FILTER, ORDER, SELECT])
    assert after.header == ["id", "name"]
    assert after.num_rows == before.num_rows
    assert after.column("id").values == before.column("id").values


def test_apply_is_deterministic():
    steps = [FILTER, ORDER, Transform("sql", {"statement": "SELECT name, score * 2 AS s FROM df"})]
    assert apply(_base(), steps).fingerprint() == apply(_base(), steps).fingerprint()


def test_apply_marks_the_failing_step():
    bad = Transform("filter", {"where": "name > 5"})
    with pytest.raises(GridLensError) as ex:
        apply(_base(), [FILTER, bad, SELECT], context=PipelineContext(table_name="people"))
    assert getattr(ex.value, "code", None) == "E_TYPE_MISMATCH"
    assert ex.value.step_index == 1


def test_steps_key_depends_on_content_only():
    assert steps_key([FILTER, ORDER]) == steps_key([Transform("filter", {"where": "score > 50"}), ORDER])
    assert steps_key([FILTER, ORDER]) != steps_key([ORDER, FILTER])


def test_push_validates_before_appending():
    pipe = QueryPipeline(_base())
    with pytest.raises(QueryError) as ex:
        pipe.push(Transform("select", {"columns": ["nope"]}))
    assert getattr(ex.value, "code", None) == "E_UNKNOWN_COLUMN"
    assert pipe.steps == ()
    assert pipe.generation == 0


def test_push_keeps_previous_view_until_installed():
    base = _base()
    pipe = QueryPipeline(base)
    req = pipe.push(FILTER)
    assert pipe.busy
    assert pipe.view is base
    _settle(pipe, req)
    assert not pipe.busy
    assert pipe.view.num_rows == 7
    assert pipe.committed == (FILTER,)


def test_undo_restores_previous_view():
    pipe = QueryPipeline(_base())
    _settle(pipe, pipe.push(FILTER))
    before = pipe.view
    _settle(pipe, pipe.push(ORDER))
    assert pipe.view != before

    req = pipe.undo()
    assert req is None  # served from the cache
    assert pipe.view == before
    assert pipe.steps == (FILTER,)
    assert pipe.cached([FILTER, ORDER]) is None


def test_undo_on_empty_pipeline():
    with pytest.raises(QueryError) as ex:
        QueryPipeline(_base()).undo()
    assert getattr(ex.value, "code", None) == "E_NOTHING_TO_UNDO"


def test_reset_returns_to_base():
    base = _base()
    pipe = QueryPipeline(base)
    _settle(pipe, pipe.push(FILTER))
    assert pipe.reset() is None
    assert pipe.view is base
    assert pipe.steps == ()


def test_newer_generation_wins_when_results_arrive_out_of_order():
    pipe = QueryPipeline(_base())
    r1 = pipe.push(FILTER)
    r2 = pipe.push(ORDER)
    assert r2.generation > r1.generation

    assert pipe.install(r2.generation, r2.steps, r2.evaluate())
    assert not pipe.install(r1.generation, r1.steps, r1.evaluate())
    assert pipe.view.column("id").values[0] == 9
    assert pipe.view.num_rows == 7
    assert pipe.committed == (FILTER, ORDER)


def test_reject_reverts_to_committed_steps():
    pipe = QueryPipeline(_base())
    _settle(pipe, pipe.push(FILTER))
    bad = pipe.push(Transform("filter", {"where": "name > 5"}))
    with pytest.raises(GridLensError) as ex:
        bad.evaluate()
    assert pipe.reject(bad.generation, ex.value)
    assert pipe.steps == (FILTER,)
    assert pipe.view.num_rows == 7
    assert not pipe.busy


def test_reject_keeps_steps_whose_result_was_superseded():
    pipe = QueryPipeline(_base())
    r1 = pipe.push(FILTER)
    r2 = pipe.push(Transform("filter", {"where": "name > 5"}))
    assert not pipe.install(r1.generation, r1.steps, r1.evaluate())
    with pytest.raises(GridLensError) as ex:
        r2.evaluate()
    assert pipe.reject(r2.generation, ex.value)
    assert pipe.steps == (FILTER,)
    assert pipe.committed == ()
    assert pipe.dirty

    _settle(pipe, pipe.request())
    assert not pipe.dirty
    assert pipe.view.num_rows == 7


def test_reject_drops_from_the_failing_step():
    pipe = QueryPipeline(_base())
    bad = Transform("filter", {"where": "name > 5"})
    pipe.push(FILTER)
    pipe.push(bad)
    req = pipe.push(ORDER)
    with pytest.raises(GridLensError) as ex:
        req.evaluate()
    assert pipe.reject(req.generation, ex.value)
    assert pipe.steps == (FILTER,)


def test_stale_error_is_ignored():
    pipe = QueryPipeline(_base())
    r1 = pipe.push(FILTER)
    r2 = pipe.push(ORDER)
    assert not pipe.reject(r1.generation, QueryError("E_TYPE_MISMATCH", "x"))
    assert pipe.steps == (FILTER, ORDER)
    assert pipe.pending == r2.generation


def test_cache_is_bounded():
    pipe = QueryPipeline(_base(), cache_size=2)
    _settle(pipe, pipe.push(FILTER))
    _settle(pipe, pipe.push(ORDER))
    assert pipe.cached([]) is None
    assert pipe.cached([FILTER, ORDER]) is not None


def test_schema_guess_follows_pending_steps():
    pipe = QueryPipeline(_base())
    pipe.push(SELECT)
    assert [f["name"] for f in pipe.schema()["fields"]] == ["id", "name"]
    pipe.push(Transform("sql", {"statement": "SELECT 1 AS one"}))
    assert pipe.schema() is None


def test_yaml_round_trip(tmp_path):
    pipe = QueryPipeline(_base())
    pipe.push(FILTER)
    pipe.push(ORDER)
    path = tmp_path / "steps.yaml"
    text = pipe.to_yaml(path, source={"uri": str(tmp_path / "people.csv"), "type": "csv"})
    assert "gridlens: 0" in text

    steps, source = QueryPipeline.steps_from_yaml(path)
    assert steps == (FILTER, ORDER)
    assert source["type"] == "csv"


def test_yaml_parse_error(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("gridlens: [0\n", encoding="utf-8")
    with pytest.raises(GridLensError) as ex:
        QueryPipeline.steps_from_yaml(path)
    assert getattr(ex.value, "code", None) == "E_YAML_PARSE"


def test_yaml_read_error(tmp_path):
    with pytest.raises(GridLensError) as ex:
        QueryPipeline.steps_from_yaml(tmp_path / "missing.yaml")
    assert getattr(ex.value, "code", None) == "E_IR_READ"


def test_stale_result_is_logged(caplog):
    pipe = QueryPipeline(_base())
    r1 = pipe.push(FILTER)
    pipe.push(ORDER)
    with caplog.at_level("DEBUG", logger=mp.__name__):
        pipe.install(r1.generation, r1.steps, r1.evaluate())
    assert "stale" in caplog.text
