"""Custom SQLAlchemy column types shared by the SPMS models"""
import re
import uuid

from sqlalchemy import TypeDecorator, String

# "2025-26": start year, then the last two digits of the following year
ACADEMIC_YEAR_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def generate_uuid():
    """Generate a UUID string"""
    return str(uuid.uuid4())


class GUID(TypeDecorator):
    """Stores UUIDs as VARCHAR(36) on every backend; accepts str or uuid.UUID"""
    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if isinstance(value, uuid.UUID):
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return str(value)
        return value


class AcademicYear(TypeDecorator):
    """Academic year label such as "2025-26"; malformed values are refused on write"""
    impl = String(7)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        value = str(value).strip()
        if not ACADEMIC_YEAR_PATTERN.match(value):
            raise ValueError(f"Academic year must look like YYYY-YY, got '{value}'")
        return value
