from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]
    # candidate, employer or admin
    type: str
