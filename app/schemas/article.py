from pydantic import BaseModel
from typing import Optional
import datetime


class ArticleCreate(BaseModel):
    title: Optional[str] = None

class Article(BaseModel):
    id: int
    user_id: int
    title: Optional[str] = None
    created_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True
