from datetime import date

import pytest

from predator.common import GROUP_ALIAS, SpecExpressionPair
from predator.field import (
    FieldProfiler,
    create_unnest,
    field_result_parser,
    generate_unnest,
    get_alias,
    get_unnested_column_name,
    group_metric_specs_by_branch,
)
from predator.models import (
    ROOT_LEVEL,
    Category,
    FieldSpec,
    FieldType,
    Metric,
    MetricType,
    Mode,
    Owner,
    Profile,
    QueryType,
    Spec,
    TableSpec,
)
from predator.query import MetricExpression, Unnest

URN = "sample-project.sample_dataset.sample_table"
TABLE_X = "entity-1-project-1.dataset_a.table_x"


class FakeMetadataStore:
    def __init__(self, spec):
        self.spec = spec
        self.calls = []

    def get_metadata(self, urn):
        self.calls.append(urn)
        return self.spec


class FakeQueryExecutor:
    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    def run(self, profile, query, query_type):
        self.calls.append((profile, query, query_type))
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return []


@pytest.fixture
def tree():
    root_a = FieldSpec("field_root_a", FieldType.RECORD, Mode.REPEATED, None, ROOT_LEVEL)
    child_a = FieldSpec("field_root_a_child_a", FieldType.RECORD, Mode.REPEATED, root_a, 2)
    grandchild_a = FieldSpec(
        "field_root_a_grandchild_a", FieldType.INTEGER, Mode.NULLABLE, child_a, 3
    )
    root_a.fields = [child_a]
    child_a.fields = [grandchild_a]
    root_b = FieldSpec("field_root_b", FieldType.STRING, Mode.NULLABLE, None, ROOT_LEVEL)
    root_c = FieldSpec("field_root_c", FieldType.STRING, Mode.NULLABLE, None, ROOT_LEVEL)
    root_d = FieldSpec("field_root_d", FieldType.RECORD, Mode.REPEATED, None, ROOT_LEVEL)
    d_child_b = FieldSpec("field_root_d_child_b", FieldType.STRING, Mode.NULLABLE, root_d, 2)
    d_child_c = FieldSpec("field_root_d_child_c", FieldType.STRING, Mode.NULLABLE, root_d, 2)
    root_d.fields = [d_child_b, d_child_c]
    return {
        "root_a": root_a,
        "child_a": child_a,
        "grandchild_a": grandchild_a,
        "root_b": root_b,
        "root_c": root_c,
        "root_d": root_d,
    }


def _pair(spec, alias):
    return SpecExpressionPair(metric_spec=spec, metric_expression=MetricExpression(alias=alias))


# ---- parse ----


def test_parse_invalidity_metrics():
    condition1 = "field_1 <= 0"
    condition2 = "field_1 < field_2"
    pairs = [
        _pair(Spec(name=MetricType.COUNT, field_id="field_1", table_id=TABLE_X), "count_field_1_0"),
        _pair(
            Spec(name=MetricType.INVALID_COUNT, field_id="field_1", table_id=TABLE_X, condition=condition1),
            "invalidcount_field_1_1",
        ),
        _pair(
            Spec(name=MetricType.INVALID_COUNT, field_id="field_1", table_id=TABLE_X, condition=condition2),
            "invalidcount_field_1_2",
        ),
    ]
    row = {
        "count_field_1_0": 100,
        "invalidcount_field_1_1": 0,
        "invalidcount_field_1_2": 0,
        GROUP_ALIAS: date(2012, 12, 1),
    }
    expected = [
        Metric(type=MetricType.COUNT, category=Category.BASIC, owner=Owner.FIELD,
               group_value="2012-12-01", field_id="field_1", value=100.0),
        Metric(type=MetricType.INVALID_COUNT, category=Category.BASIC, owner=Owner.FIELD,
               field_id="field_1", group_value="2012-12-01", value=0.0, condition=condition1),
        Metric(type=MetricType.INVALID_COUNT, category=Category.BASIC, owner=Owner.FIELD,
               field_id="field_1", group_value="2012-12-01", value=0.0, condition=condition2),
    ]
    assert field_result_parser().parse(row, pairs) == expected


def _sum_pairs():
    return [
        _pair(Spec(name=MetricType.SUM, field_id="field_2", table_id=TABLE_X), "sum_field_2_0")
    ]


def test_parse_sum_alias_not_found():
    with pytest.raises(ValueError) as exc_info:
        field_result_parser().parse({}, _sum_pairs())
    assert str(exc_info.value) == "sum value with alias sum_field_2_0, not found"


def test_parse_sum_wrong_type():
    with pytest.raises(ValueError) as exc_info:
        field_result_parser().parse({"sum_field_2_0": "some_random_string"}, _sum_pairs())
    assert str(exc_info.value) == "parse sum value to float64 with alias sum_field_2_0, failed"


def test_parse_sum_value():
    result = field_result_parser().parse({"sum_field_2_0": 100.0}, _sum_pairs())
    assert result == [
        Metric(type=MetricType.SUM, category=Category.QUALITY, owner=Owner.FIELD,
               field_id="field_2", value=100.0)
    ]


def test_parse_count_wrong_type():
    pairs = [_pair(Spec(name=MetricType.COUNT, field_id="f"), "count_f_0")]
    with pytest.raises(ValueError, match="parse count value to int64 with alias count_f_0, failed"):
        field_result_parser().parse({"count_f_0": "x"}, pairs)


def test_parse_unsupported_type():
    pairs = [_pair(Spec(name=MetricType.UNIQUE_COUNT, field_id="f"), "u_0")]
    with pytest.raises(ValueError, match="unsupported metric type: uniquecount"):
        field_result_parser().parse({"u_0": 1}, pairs)


# ---- helpers ----


def test_group_metric_specs_by_branch(tree):
    table_spec = TableSpec(fields=[tree["root_d"], tree["root_a"], tree["root_c"]])

    def spec(field_id):
        return Spec(name=MetricType.NULL_COUNT, field_id=field_id)

    ids = [
        "field_root_c",
        "field_root_a",
        "field_root_a.field_root_a_child_a",
        "field_root_a.field_root_a_child_a.field_root_a_grandchild_a",
        "field_root_d",
        "field_root_d.field_root_d_child_b",
        "field_root_d.field_root_d_child_c",
    ]
    expected = {
        tree["root_d"]: [spec("field_root_d.field_root_d_child_b"), spec("field_root_d.field_root_d_child_c")],
        None: [spec("field_root_c"), spec("field_root_a"), spec("field_root_d")],
        tree["root_a"]: [spec("field_root_a.field_root_a_child_a")],
        tree["child_a"]: [spec("field_root_a.field_root_a_child_a.field_root_a_grandchild_a")],
    }
    assert group_metric_specs_by_branch(table_spec, [spec(i) for i in ids]) == expected


def test_group_metric_specs_unknown_field(tree):
    table_spec = TableSpec(project_name="p", dataset_name="d", table_name="t", fields=[tree["root_b"]])
    with pytest.raises(LookupError, match="field ID: missing is not found on table : p.d.t"):
        group_metric_specs_by_branch(table_spec, [Spec(name=MetricType.COUNT, field_id="missing")])


def test_create_unnest(tree):
    assert create_unnest(tree["child_a"], [tree["root_a"]]) == Unnest(
        column_name="level1.`field_root_a_child_a`", alias="level2"
    )


def test_create_unnest_uses_closest_repeated_parent(tree):
    result = create_unnest(tree["grandchild_a"], [tree["root_a"], tree["child_a"]])
    assert result == Unnest(column_name="level2.`field_root_a_grandchild_a`", alias="level3")


def test_generate_unnest(tree):
    assert generate_unnest([tree["root_a"], tree["child_a"]]) == [
        Unnest(column_name="`field_root_a`", alias="level1"),
        Unnest(column_name="level1.`field_root_a_child_a`", alias="level2"),
    ]


def test_generate_unnest_only_repeated(tree):
    lineage = [tree["root_a"], tree["child_a"], tree["grandchild_a"]]
    assert generate_unnest(lineage) == [
        Unnest(column_name="`field_root_a`", alias="level1"),
        Unnest(column_name="level1.`field_root_a_child_a`", alias="level2"),
    ]


def test_generate_unnest_empty():
    assert generate_unnest([]) == []


def test_unnested_column_name_repeated_root(tree):
    assert get_unnested_column_name(tree["root_a"]) == "`field_root_a`"


def test_unnested_column_name_plain():
    sample = FieldSpec("sample_field", FieldType.STRING, Mode.NULLABLE, None, 1)
    assert get_unnested_column_name(sample) == "`sample_field`"


def test_unnested_column_name_repeated_parent(tree):
    assert get_unnested_column_name(tree["grandchild_a"]) == "level2.`field_root_a_grandchild_a`"


def test_unnested_column_name_repeated_with_nullable_parent():
    parent = FieldSpec("parent_field", FieldType.RECORD, Mode.REPEATED, None, ROOT_LEVEL)
    parent2 = FieldSpec("parent2_field", FieldType.RECORD, Mode.NULLABLE, parent, 2)
    repeated = FieldSpec("repeated_field", FieldType.STRING, Mode.REPEATED, parent2, 3)
    parent.fields = [parent2]
    parent2.fields = [repeated]
    assert get_unnested_column_name(repeated) == "level1.`parent2_field`.`repeated_field`"


def test_get_alias(tree):
    assert get_alias(tree["root_a"].name, MetricType.COUNT, 0) == "count_field_root_a_0"


# ---- profile: query generation ----

DEFAULT_PROFILE = dict(filter="active = true", group_name="`field_grouping`", urn=URN)


def _table(fields, partition_field=""):
    return TableSpec(
        project_name="sample-project",
        dataset_name="sample_dataset",
        table_name="sample_table",
        partition_field=partition_field,
        labels={"key": "value"},
        fields=fields,
    )


def _count_and_null(*field_ids):
    specs = []
    for field_id in field_ids:
        specs.append(Spec(name=MetricType.COUNT, field_id=field_id, table_id=URN))
        specs.append(Spec(name=MetricType.NULL_COUNT, field_id=field_id, table_id=URN))
    return specs


def _nested_parents(second_mode):
    parent = FieldSpec("parent_field", FieldType.RECORD, Mode.REPEATED, None, ROOT_LEVEL)
    parent2 = FieldSpec("parent2_field", FieldType.RECORD, second_mode, parent, 2)
    parent.fields = [parent2]
    parent2.fields = [FieldSpec("repeated_field", FieldType.STRING, Mode.REPEATED, parent2, 3)]
    return [parent]


def _single_parent():
    parent = FieldSpec("parent_field", FieldType.RECORD, Mode.REPEATED, None, 1)
    parent.fields = [FieldSpec("repeated_field", FieldType.STRING, Mode.REPEATED, parent, 2)]
    return [parent]


FROM = "FROM `sample-project.sample_dataset.sample_table`"


def _cases(tree):
    root_b = tree["root_b"]
    return [
        (
            Profile(**DEFAULT_PROFILE),
            _table([root_b]),
            [[
                "SELECT `field_grouping` AS __group_value , count(`field_root_b`) as count_field_root_b_0 , countif(`field_root_b` is null) as nullcount_field_root_b_1",
                FROM, "WHERE active = true", "GROUP BY `field_grouping`",
            ]],
            _count_and_null("field_root_b"),
        ),
        (
            Profile(group_name="`field_grouping`", urn=URN),
            _table([root_b]),
            [[
                "SELECT `field_grouping` AS __group_value , count(`field_root_b`) as count_field_root_b_0 , countif(`field_root_b` is null) as nullcount_field_root_b_1",
                FROM, "WHERE TRUE", "GROUP BY `field_grouping`",
            ]],
            _count_and_null("field_root_b"),
        ),
        (
            Profile(urn=URN),
            _table([root_b]),
            [[
                "SELECT count(`field_root_b`) as count_field_root_b_0 , countif(`field_root_b` is null) as nullcount_field_root_b_1",
                FROM, "WHERE TRUE",
            ]],
            _count_and_null("field_root_b"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table([root_b, tree["root_a"]]),
            [[
                "SELECT `field_grouping` AS __group_value , count(`field_root_b`) as count_field_root_b_0 , countif(`field_root_b` is null) as nullcount_field_root_b_1",
                FROM, "WHERE active = true", "GROUP BY `field_grouping`",
            ]],
            _count_and_null("field_root_b"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table([FieldSpec("repeated_field", FieldType.STRING, Mode.REPEATED, None, 1)], "_partitiontime"),
            [[
                "SELECT `field_grouping` AS __group_value , countif(array_length(`repeated_field`)>0) as count_repeated_field_0 , countif(array_length(`repeated_field`)=0) as nullcount_repeated_field_1",
                FROM, "WHERE active = true", "GROUP BY `field_grouping`",
            ]],
            _count_and_null("repeated_field"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table(_single_parent()),
            [
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(`parent_field`)>0) as count_parent_field_0 , countif(array_length(`parent_field`)=0) as nullcount_parent_field_1",
                    FROM, "WHERE active = true", "GROUP BY `field_grouping`",
                ],
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(level1.`repeated_field`)>0) as count_repeated_field_0 , countif(array_length(level1.`repeated_field`)=0) as nullcount_repeated_field_1",
                    FROM + " , UNNEST(`parent_field`) as level1", "WHERE active = true", "GROUP BY `field_grouping`",
                ],
            ],
            _count_and_null("parent_field", "parent_field.repeated_field"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table(_nested_parents(Mode.REPEATED), "_partitiontime"),
            [
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(`parent_field`)>0) as count_parent_field_0 , countif(array_length(`parent_field`)=0) as nullcount_parent_field_1",
                    FROM, "WHERE active = true", "GROUP BY `field_grouping`",
                ],
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(level2.`repeated_field`)>0) as count_repeated_field_0 , countif(array_length(level2.`repeated_field`)=0) as nullcount_repeated_field_1",
                    FROM + " , UNNEST(`parent_field`) as level1 , UNNEST(level1.`parent2_field`) as level2",
                    "WHERE active = true", "GROUP BY `field_grouping`",
                ],
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(level1.`parent2_field`)>0) as count_parent2_field_0 , countif(array_length(level1.`parent2_field`)=0) as nullcount_parent2_field_1",
                    FROM + " , UNNEST(`parent_field`) as level1", "WHERE active = true", "GROUP BY `field_grouping`",
                ],
            ],
            _count_and_null("parent_field", "parent_field.parent2_field", "parent_field.parent2_field.repeated_field"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table(_nested_parents(Mode.NULLABLE), "_partitiontime"),
            [
                [
                    "SELECT `field_grouping` AS __group_value , countif(array_length(`parent_field`)>0) as count_parent_field_0 , countif(array_length(`parent_field`)=0) as nullcount_parent_field_1",
                    FROM, "WHERE active = true", "GROUP BY `field_grouping`",
                ],
                [
                    "SELECT `field_grouping` AS __group_value , count(level1.`parent2_field`) as count_parent2_field_0 , countif(level1.`parent2_field` is null) as nullcount_parent2_field_1",
                    ", countif(array_length(level1.`parent2_field`.`repeated_field`)>0) as count_repeated_field_2 , countif(array_length(level1.`parent2_field`.`repeated_field`)=0) as nullcount_repeated_field_3",
                    FROM + " , UNNEST(`parent_field`) as level1", "WHERE active = true", "GROUP BY `field_grouping`",
                ],
            ],
            _count_and_null("parent_field", "parent_field.parent2_field", "parent_field.parent2_field.repeated_field"),
        ),
        (
            Profile(**DEFAULT_PROFILE),
            _table([FieldSpec("field_numeric", FieldType.FLOAT, Mode.NULLABLE, None, 1)], "_partitiontime"),
            [[
                "SELECT `field_grouping` AS __group_value , count(`field_numeric`) as count_field_numeric_0 , countif(`field_numeric` is null) as nullcount_field_numeric_1 , sum(cast(`field_numeric` as float64)) as sum_field_numeric_2 , countif(`field_numeric` <= 0) as invalidcount_field_numeric_3",
                FROM, "WHERE active = true", "GROUP BY `field_grouping`",
            ]],
            [
                *_count_and_null("field_numeric"),
                Spec(name=MetricType.SUM, field_id="field_numeric", table_id=URN),
                Spec(name=MetricType.INVALID_COUNT, field_id="field_numeric", table_id=URN,
                     condition="`field_numeric` <= 0"),
            ],
        ),
    ]


@pytest.mark.parametrize("index", range(9))
def test_profile_generates_queries(tree, index):
    profile, table_spec, queries, metric_specs = _cases(tree)[index]
    metadata_store = FakeMetadataStore(table_spec)
    executor = FakeQueryExecutor()

    result = FieldProfiler(executor, metadata_store).profile(None, profile, metric_specs)

    assert result == []
    assert metadata_store.calls == [table_spec.table_id()]
    assert [call[1] for call in executor.calls] == [" ".join(q) for q in queries]
    assert all(call[2] == QueryType.FIELD_LEVEL for call in executor.calls)


# ---- profile: results ----


def _field_metric(field_spec, metric_type, value):
    return Metric(field_id=field_spec.id(), type=metric_type, category=Category.BASIC,
                  owner=Owner.FIELD, value=float(value), group_value="ID")


def test_profile_returns_metrics(tree):
    profile = Profile(filter="active = true", group_name="field_grouping", urn=URN)
    duration = FieldSpec("order_duration_minute", FieldType.INTEGER, Mode.NULLABLE, None, 1)
    spec = _table([tree["root_c"], tree["root_b"], duration], "_partitiontime")
    fields = [tree["root_c"], tree["root_b"], duration]
    metric_specs = []
    for f in fields:
        metric_specs.append(Spec(name=MetricType.COUNT, field_id=f.id(), table_id=spec.table_id(), owner=Owner.FIELD))
        metric_specs.append(Spec(name=MetricType.NULL_COUNT, field_id=f.id(), table_id=spec.table_id(), owner=Owner.FIELD))
    rows = [{
        "count_field_root_c_0": 295,
        "nullcount_field_root_c_1": 5,
        "count_field_root_b_2": 300,
        "nullcount_field_root_b_3": 0,
        "count_order_duration_minute_4": 295,
        "nullcount_order_duration_minute_5": 5,
        GROUP_ALIAS: "ID",
    }]
    expected = [
        _field_metric(tree["root_c"], MetricType.COUNT, 295),
        _field_metric(tree["root_c"], MetricType.NULL_COUNT, 5),
        _field_metric(tree["root_b"], MetricType.COUNT, 300),
        _field_metric(tree["root_b"], MetricType.NULL_COUNT, 0),
        _field_metric(duration, MetricType.COUNT, 295),
        _field_metric(duration, MetricType.NULL_COUNT, 5),
    ]
    profiler = FieldProfiler(FakeQueryExecutor([rows]), FakeMetadataStore(spec))
    assert profiler.profile(None, profile, metric_specs) == expected


def test_profile_returns_nested_metrics(tree):
    profile = Profile(**DEFAULT_PROFILE)
    spec = _table([tree["root_b"], tree["root_a"]], "_partitiontime")
    fields = [tree["root_b"], tree["root_a"], tree["child_a"], tree["grandchild_a"]]
    metric_specs = []
    for f in fields:
        metric_specs.append(Spec(name=MetricType.COUNT, field_id=f.id(), table_id=spec.table_id(), owner=Owner.FIELD))
        metric_specs.append(Spec(name=MetricType.NULL_COUNT, field_id=f.id(), table_id=spec.table_id(), owner=Owner.FIELD))
    responses = [
        [{"count_field_root_b_0": 300, "nullcount_field_root_b_1": 0,
          "count_field_root_a_2": 400, "nullcount_field_root_a_3": 0, GROUP_ALIAS: "ID"}],
        [{"count_field_root_a_child_a_0": 500, "nullcount_field_root_a_child_a_1": 0, GROUP_ALIAS: "ID"}],
        [{"count_field_root_a_grandchild_a_0": 600, "nullcount_field_root_a_grandchild_a_1": 0, GROUP_ALIAS: "ID"}],
    ]
    expected = [
        _field_metric(tree["root_b"], MetricType.COUNT, 300),
        _field_metric(tree["root_b"], MetricType.NULL_COUNT, 0),
        _field_metric(tree["root_a"], MetricType.COUNT, 400),
        _field_metric(tree["root_a"], MetricType.NULL_COUNT, 0),
        _field_metric(tree["child_a"], MetricType.COUNT, 500),
        _field_metric(tree["child_a"], MetricType.NULL_COUNT, 0),
        _field_metric(tree["grandchild_a"], MetricType.COUNT, 600),
        _field_metric(tree["grandchild_a"], MetricType.NULL_COUNT, 0),
    ]
    profiler = FieldProfiler(FakeQueryExecutor(responses), FakeMetadataStore(spec))
    assert profiler.profile(None, profile, metric_specs) == expected


def test_profile_propagates_query_error(tree):
    profile = Profile(**DEFAULT_PROFILE)
    spec = TableSpec(fields=[tree["root_b"]])
    metric_specs = [Spec(name=MetricType.COUNT, field_id=tree["root_b"].id(),
                         table_id=spec.table_id(), owner=Owner.FIELD)]
    query_error = RuntimeError("query execution error")
    profiler = FieldProfiler(FakeQueryExecutor(error=query_error), FakeMetadataStore(spec))
    with pytest.raises(RuntimeError) as exc_info:
        profiler.profile(None, profile, metric_specs)
    assert exc_info.value is query_error