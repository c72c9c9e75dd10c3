import pytest

from kerits.core import said as saids
from kerits.core.credential import Credential, is_credential_body
from kerits.core.errors import MalformedInput, SAIDMismatch, SchemaViolation
from kerits.core.schema import DRAFT_07, Schema

ISSUER = "EKiMDfnmGf4ZDXv6YfP7tBvT4gLiwWqq6cU3dJZKlNq3"
HOLDER = "EFgnk_c08WmZGgv9_mpldibRuqFMTQN-rAgtD-TCOwbs"
SCHEMA = "EBfdlu8R27Fbx-ehrqwImnK-8Cm79sqbAQ4MmvEAYqao"
REGISTRY = "EBdXt3gIXOf2BBWNHdSXCJnFJL5OuQPyM5K0neuniccM"
DT = "2026-01-31T14:00:00.000000+00:00"


@pytest.fixture
def credential():
    return Credential.create(
        issuer=ISSUER,
        schema=SCHEMA,
        data={"name": "Alice", "grade": "A"},
        holder=HOLDER,
        registry=REGISTRY,
        dt=DT,
    )


def test_credential_fields(credential):
    assert credential.issuer == ISSUER
    assert credential.holder == HOLDER
    assert credential.schema == SCHEMA
    assert credential.registry == REGISTRY
    assert credential.issued_at == DT
    assert credential.data == {"name": "Alice", "grade": "A"}
    assert credential.sad["v"].startswith("ACDC10JSON")
    assert len(credential.said) == 44


def test_credential_said_verifies(credential):
    assert credential.verify()
    assert saids.verify(credential.sad["a"])
    size = saids.deversify(credential.sad["v"])[4]
    assert size == len(credential.raw.encode("utf-8"))


def test_credential_is_deterministic(credential):
    again = Credential.create(
        issuer=ISSUER, schema=SCHEMA, data={"grade": "A", "name": "Alice"},
        holder=HOLDER, registry=REGISTRY, dt=DT,
    )
    assert again.said == credential.said


def test_tampered_attributes_fail(credential):
    sad = credential.to_dict()
    sad["a"] = dict(sad["a"], grade="A+")
    assert not Credential.from_dict(sad).verify()

    resealed = dict(sad, a=saids.saidify(sad["a"]))
    assert not Credential.from_dict(resealed).verify()


def test_credential_edges(credential):
    chained = Credential.create(
        issuer=ISSUER, schema=SCHEMA, data={"score": 9},
        edges={"source": credential.said, "extra": {"n": REGISTRY, "s": SCHEMA}},
        dt=DT,
    )
    assert chained.verify()
    assert chained.edges["source"] == {"n": credential.said}
    assert chained.edge_saids == [credential.said, REGISTRY]
    assert saids.verify(chained.sad["e"])
    assert chained.holder is None
    assert chained.registry is None


def test_reserved_edge_label():
    with pytest.raises(ValueError):
        Credential.create(issuer=ISSUER, schema=SCHEMA, data={}, edges={"d": REGISTRY})


def test_create_requires_issuer_and_schema():
    with pytest.raises(ValueError):
        Credential.create(issuer="", schema=SCHEMA, data={})
    with pytest.raises(ValueError):
        Credential.create(issuer=ISSUER, schema="", data={})


def test_from_dict_roundtrip(credential):
    loaded = Credential.from_dict(credential.to_dict())
    assert loaded == credential
    assert loaded.verify()


def test_from_dict_rejects_malformed(credential):
    with pytest.raises(MalformedInput):
        Credential.from_dict(["not", "an", "object"])

    keri_version = dict(credential.to_dict(), v="KERI10JSON000000_")
    with pytest.raises(MalformedInput):
        Credential.from_dict(keri_version)

    no_schema = credential.to_dict()
    del no_schema["s"]
    with pytest.raises(MalformedInput):
        Credential.from_dict(no_schema)

    no_attrs = dict(credential.to_dict(), a="flat")
    with pytest.raises(MalformedInput):
        Credential.from_dict(no_attrs)


@pytest.fixture
def grade_schema():
    return Schema.create(
        {"name": {"type": "string"}, "grade": {"type": "string", "enum": ["A", "B", "C"]}},
        required=["name", "grade"],
        title="Course grade",
    )


def test_schema_said_in_id(grade_schema):
    assert grade_schema.said.startswith("E")
    assert len(grade_schema.said) == 44
    assert grade_schema.verify()
    assert grade_schema.sed["$schema"] == DRAFT_07
    assert saids.verify(grade_schema.to_dict(), label="$id")

    tampered = dict(grade_schema.to_dict(), title="Other")
    assert not Schema.from_dict(tampered).verify()


def test_create_validates_against_schema(grade_schema):
    credential = Credential.create(
        issuer=ISSUER, schema=grade_schema, data={"name": "Alice", "grade": "A"}, dt=DT,
    )
    assert credential.schema == grade_schema.said
    assert credential.verify()
    credential.validate(grade_schema)

    with pytest.raises(SchemaViolation) as exc:
        Credential.create(issuer=ISSUER, schema=grade_schema, data={"name": "Bob", "grade": "F"})
    assert exc.value.errors[0].startswith("grade:")

    with pytest.raises(SchemaViolation) as exc:
        Credential.create(issuer=ISSUER, schema=grade_schema, data={"grade": "F"})
    assert len(exc.value.errors) == 2


def test_validate_rejects_other_schema(credential, grade_schema):
    with pytest.raises(SchemaViolation):
        credential.validate(grade_schema)


def test_tampered_schema_is_refused(grade_schema):
    loose = dict(grade_schema.to_dict(), required=[])
    with pytest.raises(SAIDMismatch):
        Schema.from_dict(loose).validate({})


def test_schema_from_dict_rejects_malformed():
    with pytest.raises(MalformedInput):
        Schema.from_dict({"type": "object"})
    with pytest.raises(MalformedInput):
        Schema.from_dict({"$id": "", "type": 5})


def test_credential_body_detection(credential):
    assert is_credential_body(credential.to_dict())
    assert not is_credential_body({"v": "KERI10JSON000000_", "t": "icp"})
    assert not is_credential_body(dict(credential.to_dict(), t="iss"))
    assert not is_credential_body("ACDC")
