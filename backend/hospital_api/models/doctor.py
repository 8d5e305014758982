from beanie import Document, Indexed


class DoctorDoc(Document):
    """ملف الطبيب في الدليل (قد يوجد قبل أن يسجل الطبيب دخوله)."""
    contact_email: Indexed(str, unique=True)
    # يُكتب مرة واحدة فقط عند ربط الملف بهوية الطبيب
    identity_uid: Indexed(str) | None = None
    name: str
    specialty: str
    phone: str | None = None
    bio: str = ""
    experience: str | None = None
    available: bool = True

    class Settings:
        name = "doctors"
