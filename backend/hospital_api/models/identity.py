from beanie import Document, Indexed
from pydantic import Field
from datetime import datetime, timezone
from hospital_api.constants import Role


class IdentityDoc(Document):
    """هوية مستخدم مصادق عليه (مدير/طبيب/مريض).

    - uid يأتي من مزود المصادقة وهو فريد.
    - الدور يُحدد مرة واحدة عند أول تسجيل دخول ولا يتغير بعدها.
    """

    uid: Indexed(str, unique=True)
    email: Indexed(str)
    display_name: str
    role: Role
    phone: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "identities"
