import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


# 点赞 / 收藏：复合主键保证集合语义（同一用户不会重复出现）
article_likes = Table(
    "article_likes",
    Base.metadata,
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

comment_likes = Table(
    "comment_likes",
    Base.metadata,
    Column("comment_id", Integer, ForeignKey("comments.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

user_favorites = Table(
    "user_favorites",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    # 旧数据可能没有密码
    hashed_password = Column(String(128), nullable=True)
    role = Column(String(16), default=Role.USER.value, nullable=False)
    gender = Column(String(16), nullable=True)
    age = Column(Integer, nullable=True)
    avatar = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    articles = relationship("Article", back_populates="author", order_by="Article.id")
    comments = relationship("Comment", back_populates="author")
    favorite_articles = relationship(
        "Article", secondary=user_favorites, back_populates="favorited_by", collection_class=set
    )


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    articles = relationship("Article", back_populates="category")


class Article(Base):
    __tablename__ = "articles"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=False)
    # {public_id, url, secure_url, created_at}
    image = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)

    author = relationship("User", back_populates="articles")
    category = relationship("Category", back_populates="articles")
    likes = relationship("User", secondary=article_likes, collection_class=set)
    favorited_by = relationship(
        "User", secondary=user_favorites, back_populates="favorite_articles", collection_class=set
    )
    # 只包含顶级评论，最新的在前
    comments = relationship(
        "Comment",
        primaryjoin="and_(Article.id == Comment.article_id, Comment.parent_id.is_(None))",
        order_by="[Comment.created_at.desc(), Comment.id.desc()]",
        viewonly=True,
    )


class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True, index=True)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # 作者被删除后评论仍可保留
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    author = relationship("User", back_populates="comments")

    article_id = Column(Integer, ForeignKey("articles.id"), nullable=False, index=True)
    article = relationship("Article")

    # 回复功能：parent 是直接父评论，main_parent 是所在楼层的顶级评论
    parent_id = Column(Integer, ForeignKey("comments.id"), nullable=True, index=True)
    main_parent_id = Column(Integer, ForeignKey("comments.id"), nullable=True, index=True)
    parent = relationship("Comment", remote_side=[id], foreign_keys=[parent_id], back_populates="replies")
    replies = relationship(
        "Comment", foreign_keys=[parent_id], back_populates="parent", order_by=[created_at, id]
    )
    main_parent = relationship("Comment", remote_side=[id], foreign_keys=[main_parent_id])

    likes = relationship("User", secondary=comment_likes, collection_class=set)
