from datetime import datetime
from typing import List, Optional

from pydantic import Field

from listings.schemas.common import CamelModel

class UploadedFile(CamelModel):
    key: str
    url: str
    content_type: str
    size: int

class UploadResult(CamelModel):
    files: List[UploadedFile] = Field(default_factory=list)

class BackupInfo(CamelModel):
    id: str
    timestamp: datetime
    file_count: int
    total_size: int
    description: Optional[str] = None

class BackupCreateRequest(CamelModel):
    description: Optional[str] = None
