from enum import Enum
from pydantic import BaseModel


class DocumentType(str, Enum):
    PASSPORT = "passport"
    LICENSE = "license"
    OTHER = "other"


class DocumentModel(BaseModel):
    client_id: str
    client_name: str
    url: str
    type: DocumentType = DocumentType.OTHER
