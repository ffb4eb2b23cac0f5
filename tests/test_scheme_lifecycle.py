# tests/test_scheme_lifecycle.py

import pytest

from sis_app.crud import gradebook
from sis_app.exceptions import GradeValidationError, SchemeLockedError
from sis_app.models.all_models import SchemeType, WeightPolicy
from sis_app.schemas.gradebook_schemas import (
    ComponentCreate, ComponentUpdate, ComponentWeightInput, ComponentWeightsUpsert, SchemeCreate,
    TransmutationRowSpec, TransmutationRowsUpsert, TransmutationTableCreate, WeightProfileCreate
)


@pytest.fixture
def generic_scheme(db, admin_context):
    scheme = gradebook.create_scheme(db, admin_context, SchemeCreate(name="Generic"))
    components = [
        gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code=code, label=code, display_order=i))
        for i, code in enumerate(["WW", "PT", "QA"], start=1)
    ]
    profile = gradebook.create_weight_profile(
        db, admin_context, scheme.id, WeightProfileCreate(profile_key="default", profile_label="Default", is_default=True)
    )
    return scheme, components, profile


def set_weights(db, context, scheme, profile, components, values):
    return gradebook.upsert_component_weights(db, context, scheme.id, profile.id, ComponentWeightsUpsert(weights=[
        ComponentWeightInput(component_id=c.id, weight_percent=v) for c, v in zip(components, values)
    ]))


@pytest.mark.parametrize("values", [(30.02, 50, 20), (29.5, 50, 20)])
def test_publish_rejects_weights_off_100(db, admin_context, generic_scheme, values):
    scheme, components, profile = generic_scheme
    _, total = set_weights(db, admin_context, scheme, profile, components, values)
    assert total != 100

    with pytest.raises(GradeValidationError):
        gradebook.publish_scheme(db, admin_context, scheme.id)
    assert gradebook.get_scheme(db, admin_context, scheme.id).published_at is None


def test_publish_accepts_exactly_100(db, admin_context, generic_scheme):
    scheme, components, profile = generic_scheme
    set_weights(db, admin_context, scheme, profile, components, (30, 50, 20))

    published = gradebook.publish_scheme(db, admin_context, scheme.id)

    assert published.published_at is not None


def test_upsert_weights_replaces_previous_set(db, admin_context, generic_scheme):
    scheme, components, profile = generic_scheme
    set_weights(db, admin_context, scheme, profile, components, (40, 40, 20))
    weights, total = set_weights(db, admin_context, scheme, profile, components, (30, 50, 20))

    active = gradebook.list_component_weights(db, admin_context, scheme.id, profile.id)
    assert total == 100
    assert sorted(w.weight_percent for w in active) == [20, 30, 50]
    assert {w.id for w in active} == {w.id for w in weights}


def test_normalize_scheme_publishes_with_partial_weights(db, admin_context):
    scheme = gradebook.create_scheme(db, admin_context, SchemeCreate(name="Lenient", weight_policy=WeightPolicy.NORMALIZE))
    component = gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code="WW", label="Written"))
    gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code="PT", label="Tasks"))
    profile = gradebook.create_weight_profile(
        db, admin_context, scheme.id, WeightProfileCreate(profile_key="default", profile_label="Default", is_default=True)
    )
    set_weights(db, admin_context, scheme, profile, [component], (60,))

    assert gradebook.publish_scheme(db, admin_context, scheme.id).published_at is not None


def test_published_scheme_is_locked(db, admin_context, generic_scheme):
    scheme, components, profile = generic_scheme
    set_weights(db, admin_context, scheme, profile, components, (30, 50, 20))
    gradebook.publish_scheme(db, admin_context, scheme.id)

    with pytest.raises(SchemeLockedError):
        gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code="EX", label="Extra"))
    with pytest.raises(SchemeLockedError):
        gradebook.update_component(db, admin_context, components[0].id, ComponentUpdate(label="Renamed"))
    with pytest.raises(SchemeLockedError):
        set_weights(db, admin_context, scheme, profile, components, (20, 60, 20))
    with pytest.raises(SchemeLockedError):
        gradebook.create_weight_profile(
            db, admin_context, scheme.id, WeightProfileCreate(profile_key="stem", profile_label="STEM")
        )
    with pytest.raises(SchemeLockedError):
        gradebook.publish_scheme(db, admin_context, scheme.id)


def test_publish_requires_components(db, admin_context):
    scheme = gradebook.create_scheme(db, admin_context, SchemeCreate(name="Empty"))

    with pytest.raises(GradeValidationError, match="no components"):
        gradebook.publish_scheme(db, admin_context, scheme.id)


def test_only_one_default_profile(db, admin_context, generic_scheme):
    scheme, _, first = generic_scheme
    gradebook.create_weight_profile(
        db, admin_context, scheme.id, WeightProfileCreate(profile_key="stem", profile_label="STEM", is_default=True)
    )

    defaults = [p for p in gradebook.list_weight_profiles(db, admin_context, scheme.id) if p.is_default]
    assert [p.profile_key for p in defaults] == ["stem"]


def test_deped_bootstrap(db, admin_context):
    scheme = gradebook.create_scheme(
        db, admin_context, SchemeCreate(name="DepEd", scheme_type=SchemeType.DEPED_K12, with_defaults=True)
    )

    components = gradebook.list_components(db, admin_context, scheme.id)
    assert [(c.code, c.label, c.display_order) for c in components] == [
        ("WW", "Written Works", 1), ("PT", "Performance Tasks", 2), ("QA", "Quarterly Assessment", 3),
    ]
    profiles = gradebook.list_weight_profiles(db, admin_context, scheme.id)
    assert [(p.profile_key, p.is_default) for p in profiles] == [("default", True)]
    weights = {w.component_id: w.weight_percent for w in gradebook.list_component_weights(db, admin_context, scheme.id, profiles[0].id)}
    assert [weights[c.id] for c in components] == [30, 50, 20]

    tables = gradebook.list_transmutation_tables(db, admin_context, scheme.id)
    assert len(tables) == 1
    assert tables[0].published_at is None
    assert tables[0].description == gradebook.STANDARD_TABLE_DESCRIPTION
    assert len(gradebook.table_rows(db, tables[0])) == 26


def test_deped_publish_requires_published_table(db, admin_context):
    scheme = gradebook.create_scheme(
        db, admin_context, SchemeCreate(name="DepEd", scheme_type=SchemeType.DEPED_K12, with_defaults=True)
    )

    with pytest.raises(GradeValidationError, match="transmutation table"):
        gradebook.publish_scheme(db, admin_context, scheme.id)

    table = gradebook.list_transmutation_tables(db, admin_context, scheme.id)[0]
    gradebook.publish_transmutation_table(db, admin_context, table.id)
    assert gradebook.publish_scheme(db, admin_context, scheme.id).published_at is not None


def test_transmutation_rows_reject_duplicates(db, admin_context, generic_scheme):
    scheme, _, _ = generic_scheme
    table = gradebook.create_transmutation_table(db, admin_context, scheme.id, TransmutationTableCreate())

    with pytest.raises(GradeValidationError, match="Duplicate"):
        gradebook.upsert_transmutation_rows(db, admin_context, table.id, TransmutationRowsUpsert.model_construct(rows=[
            TransmutationRowSpec(initial_grade=75, transmuted_grade=80),
            TransmutationRowSpec(initial_grade=75, transmuted_grade=81),
        ]))


def test_empty_table_cannot_be_published(db, admin_context, generic_scheme):
    scheme, _, _ = generic_scheme
    table = gradebook.create_transmutation_table(db, admin_context, scheme.id, TransmutationTableCreate())

    with pytest.raises(GradeValidationError):
        gradebook.publish_transmutation_table(db, admin_context, table.id)


def test_published_table_rows_are_locked(db, admin_context, generic_scheme):
    scheme, _, _ = generic_scheme
    table = gradebook.create_transmutation_table(
        db, admin_context, scheme.id, TransmutationTableCreate(use_standard_rows=True)
    )
    gradebook.publish_transmutation_table(db, admin_context, table.id)

    with pytest.raises(SchemeLockedError):
        gradebook.upsert_transmutation_rows(db, admin_context, table.id, TransmutationRowsUpsert(rows=[
            TransmutationRowSpec(initial_grade=60, transmuted_grade=75),
        ]))


def test_table_versions_increment(db, admin_context, generic_scheme):
    scheme, _, _ = generic_scheme
    first = gradebook.create_transmutation_table(db, admin_context, scheme.id, TransmutationTableCreate())
    second = gradebook.create_transmutation_table(db, admin_context, scheme.id, TransmutationTableCreate())

    assert (first.version, second.version) == (1, 2)


def test_new_version_clones_structure_as_draft(db, admin_context):
    scheme = gradebook.create_scheme(
        db, admin_context, SchemeCreate(name="DepEd", scheme_type=SchemeType.DEPED_K12, with_defaults=True)
    )
    table = gradebook.list_transmutation_tables(db, admin_context, scheme.id)[0]
    gradebook.publish_transmutation_table(db, admin_context, table.id)
    gradebook.publish_scheme(db, admin_context, scheme.id)

    clone = gradebook.create_scheme_version(db, admin_context, scheme.id)

    assert clone.version == 2
    assert clone.parent_scheme_id == scheme.id
    assert clone.published_at is None
    components = gradebook.list_components(db, admin_context, clone.id)
    assert [c.code for c in components] == ["WW", "PT", "QA"]
    profile = gradebook.list_weight_profiles(db, admin_context, clone.id)[0]
    weights = gradebook.list_component_weights(db, admin_context, clone.id, profile.id)
    assert {w.component_id for w in weights} == {c.id for c in components}
    clone_tables = gradebook.list_transmutation_tables(db, admin_context, clone.id)
    assert len(gradebook.table_rows(db, clone_tables[0])) == 26

    # the clone is editable and the original stays locked
    gradebook.create_component(db, admin_context, clone.id, ComponentCreate(code="EX", label="Extra", display_order=4))
    with pytest.raises(SchemeLockedError):
        gradebook.create_component(db, admin_context, scheme.id, ComponentCreate(code="EX", label="Extra"))
