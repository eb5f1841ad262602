from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import Gender, Role


def _ids(value):
    """likes / favorites 在 ORM 中是 User / Article 对象集合，输出时只保留 id。"""
    if value is None:
        return []
    return sorted(getattr(item, "id", item) for item in value)


class UserCreate(BaseModel):
    name: str
    email: EmailStr
    password: str


class UserLogin(BaseModel):
    # 用户名或邮箱
    email: str
    password: str


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    gender: Optional[Gender] = None
    age: Optional[int] = Field(None, ge=0)
    avatar: Optional[str] = None


class PasswordUpdate(BaseModel):
    currentPassword: str
    newPassword: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    gender: Optional[Gender] = None
    age: Optional[int] = None
    avatar: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserDetail(UserOut):
    favorite_articles: List[int] = []
    articles: List[int] = []

    @field_validator("favorite_articles", "articles", mode="before")
    @classmethod
    def as_ids(cls, value):
        return _ids(value)


class AuthOut(BaseModel):
    user: UserDetail
    token: str
    authType: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str


class CategoryOut(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ImageOut(BaseModel):
    public_id: Optional[str] = None
    url: Optional[str] = None
    secure_url: Optional[str] = None
    created_at: Optional[str] = None


class ArticleCreate(BaseModel):
    title: str = ""
    description: str = ""
    category: Optional[int] = None


# 评论相关模式
class CommentCreate(BaseModel):
    text: str


class CommentOut(BaseModel):
    id: int
    text: str
    created_at: datetime
    article_id: int
    author: Optional[UserOut] = None
    parent_id: Optional[int] = None
    main_parent_id: Optional[int] = None
    likes: List[int] = []
    replies: List['CommentOut'] = []

    @field_validator("likes", mode="before")
    @classmethod
    def like_ids(cls, value):
        return _ids(value)

    @field_validator("replies", mode="after")
    @classmethod
    def newest_first(cls, replies):
        return sorted(replies, key=lambda c: (c.created_at, c.id), reverse=True)

    class Config:
        from_attributes = True


class ArticleOut(BaseModel):
    id: int
    title: str
    description: str
    image: Optional[ImageOut] = None
    created_at: datetime
    author: Optional[UserOut] = None
    category: Optional[CategoryOut] = None
    likes: List[int] = []
    comments: List[CommentOut] = []

    @field_validator("likes", mode="before")
    @classmethod
    def like_ids(cls, value):
        return _ids(value)

    class Config:
        from_attributes = True


class ArticlePage(BaseModel):
    total: int
    result: List[ArticleOut]


class FavoriteToggle(BaseModel):
    toFavorite: bool


class LikeToggle(BaseModel):
    toLike: bool


# 解决循环引用
CommentOut.model_rebuild()
