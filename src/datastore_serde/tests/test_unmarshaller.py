import pytest

from ..exceptions import ConstructorArityError, MappingError, MissingNameBindingError
from ..records import NULL, Key, Record, Value, ValueType
from .testing import (
    Address,
    Comment,
    Contact,
    ContactSummary,
    ImmutableAddress,
    ImmutableContact,
    NameOnly,
    Pair,
    Person,
    PhoneNumber,
    Reply,
    UnboundName,
)


def string(value):
    return Value(ValueType.STRING, value)


def nested(**properties):
    return Value(ValueType.RECORD, Record(properties=properties))


class TestUnmarshaller:
    @pytest.fixture
    def mapper(self):
        from ..cache import DescriptorCache
        from ..mapper import RecordMapper

        return RecordMapper(cache=DescriptorCache())

    def test_mutable(self, mapper):
        record = Record(
            Key("Contact", 1),
            {
                "name": string("Alice"),
                "address": nested(street=string("1 Main St"), zip=string("02134")),
                "unknown": string("ignored"),
            },
        )
        assert mapper.unmarshal(record, Contact) == Contact(
            id=1, name="Alice", address=Address("1 Main St", "02134")
        )

    def test_absent_properties_keep_defaults(self, mapper):
        assert mapper.unmarshal(Record(Key("Contact", 2)), Contact) == Contact(id=2)

    def test_imploded_null(self, mapper):
        record = Record(Key("Contact", 2), {"name": NULL, "address": NULL})
        assert mapper.unmarshal(record, Contact) == Contact(id=2)

    def test_imploded_value_must_be_a_record(self, mapper):
        record = Record(Key("Contact", 2), {"address": string("1 Main St")})
        with pytest.raises(MappingError) as e:
            mapper.unmarshal(record, Contact)
        assert e.value.field_name == "address"

    def test_wrong_value_type(self, mapper):
        record = Record(Key("Contact", 2), {"name": Value(ValueType.INTEGER, 1)})
        with pytest.raises(MappingError):
            mapper.unmarshal(record, Contact)

    def test_record_without_key(self, mapper):
        with pytest.raises(MappingError):
            mapper.unmarshal(Record(properties={"name": string("x")}), Contact)

    def test_none_record(self, mapper):
        assert mapper.unmarshal(None, Contact) is None

    def test_parent_key(self, mapper):
        post = Key("Post", 1)
        record = Record(Key("Comment", 3, post), {"body": string("hi")})
        assert mapper.unmarshal(record, Comment) == Comment(id=3, body="hi", parent=post)

    def test_projection(self, mapper):
        record = Record(Key("Contact", 1), {"name": string("Alice"), "address": NULL})
        assert mapper.unmarshal(record, ContactSummary) == ContactSummary(id=1, name="Alice")

    def test_immutable(self, mapper):
        record = Record(
            Key("ImmutableContacts", 5),
            {
                "first_name": string("Ada"),
                "last_name": string("Lovelace"),
                "cellNumber": nested(
                    countryCode=string("44"),
                    area_code=string("20"),
                    subscriber_number=string("79460000"),
                ),
                "home_address": NULL,
                "work_address.street": string("1 Analytical Way"),
                "workZip": string("N1"),
            },
        )
        assert mapper.unmarshal(record, ImmutableContact) == ImmutableContact(
            id=5,
            first_name="Ada",
            last_name="Lovelace",
            mobile_number=PhoneNumber("44", "20", "79460000"),
            home_address=None,
            work_address=ImmutableAddress("1 Analytical Way", "N1"),
        )

    def test_named_constructor_bindings(self, mapper):
        record = Record(
            Key("Person", 1), {"given_name": string("Jane"), "family_name": string("Doe")}
        )
        assert mapper.unmarshal(record, Person) == Person(1, "Jane", "Doe")

    def test_no_constructor_of_matching_arity(self, mapper):
        record = Record(Key("NameOnly", "john"), {"surname": string("Smith")})
        with pytest.raises(ConstructorArityError) as e:
            mapper.unmarshal(record, NameOnly)
        assert e.value.arity == 2
        assert str(e.value) == "Class NameOnly requires a public constructor with 2 parameters"

    def test_constructor_matching_arity(self, mapper):
        entity = mapper.unmarshal(Record(Key("NameOnly", "john")), NameOnly)
        assert (entity.name, entity.surname) == ("john", "Doe")

    def test_missing_name_binding(self, mapper):
        record = Record(Key("UnboundName", "john"), {"surname": string("Smith")})
        with pytest.raises(MissingNameBindingError) as e:
            mapper.unmarshal(record, UnboundName)
        assert str(e.value) == "All constructor fields must have a name binding (UnboundName)"

    def test_later_constructor_binding_every_field(self, mapper):
        record = Record(Key("Pair", 1), {"first": string("a"), "second": string("b")})
        assert mapper.unmarshal(record, Pair) == Pair(1, "a", "b")

    def test_missing_parent_is_not_resolved(self, mapper):
        assert mapper.unmarshal(Record(Key("Comment", 3)), Comment) == Comment(id=3)

        record = Record(Key("Reply", 1), {"body": string("hi")})
        assert mapper.unmarshal(record, Reply) == Reply(1, "hi", None)
        post = Key("Post", 1)
        record = Record(Key("Reply", 2, post), {"body": string("hi")})
        assert mapper.unmarshal(record, Reply) == Reply(2, "hi", post)
