import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from . import auth, config, schemas
from .errors import (
    AuthError,
    AuthorizationError,
    ConflictError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from .models import Article, Category, Comment, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

MIN_PASSWORD_LENGTH = 6


class AuthType(str, Enum):
    SIGNIN = "SIGNIN"
    SIGNUP = "SIGNUP"


def set_membership(members: set, element, present: bool) -> bool:
    """
    把 element 在 members 中的成员关系设置为 present。

    收藏、文章点赞、评论点赞共用这一个操作：只有状态不一致时才增删，
    重复调用是空操作。返回集合是否发生了变化。
    """
    if present and element not in members:
        members.add(element)
        return True
    if not present and element in members:
        members.discard(element)
        return True
    return False


def _commit_membership(db: Session, changed: bool) -> bool:
    """提交一次成员关系变更。并发请求已经把关联表写成目标状态时按未变化处理。"""
    if not changed:
        return False
    try:
        db.commit()
    except (IntegrityError, StaleDataError):
        db.rollback()
        logger.info("membership already in requested state, skipped")
        return False
    return True


# ========= 用户 =========
def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def get_user_by_name(db: Session, name: str):
    return db.query(User).filter(User.name == name).first()


def get_user_by_email(db: Session, email: str):
    return db.query(User).filter(User.email == email.lower()).first()


def _check_password(password: str, field: str = "password"):
    if not password:
        raise ValidationError("Please add a password", field=field)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"The password must contain at least {MIN_PASSWORD_LENGTH} characters", field=field
        )


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def _credential_matches(user: User, password: str, allow_empty: bool) -> bool:
    if user.hashed_password:
        return verify_password(password, user.hashed_password)
    # 没有密码的旧账号：是否放行由 ALLOW_EMPTY_PASSWORD_LOGIN 决定
    return allow_empty


def _commit_unique(db: Session):
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("User with that name or email already exists") from e


def create_user(db: Session, user: schemas.UserCreate) -> User:
    if not user.name:
        raise ValidationError("Please add username", field="name")
    if not user.email:
        raise ValidationError("Please add an email", field="email")
    _check_password(user.password)

    email = user.email.lower()
    if get_user_by_name(db, user.name):
        raise ConflictError("User with that name already exists!", field="name")
    if get_user_by_email(db, email):
        raise ConflictError("User with that email already exists!", field="email")

    db_user = User(name=user.name, email=email, hashed_password=pwd_context.hash(user.password))
    db.add(db_user)
    _commit_unique(db)
    db.refresh(db_user)
    logger.info("registered user %s (id=%s)", db_user.name, db_user.id)
    return db_user


def verify_credential(
    db: Session, identifier: str, password: str, allow_empty: Optional[bool] = None
) -> User:
    """按用户名或邮箱（不区分大小写）查找用户并校验密码。"""
    if allow_empty is None:
        allow_empty = config.ALLOW_EMPTY_PASSWORD_LOGIN
    user = (
        db.query(User)
        .filter((User.email == identifier.lower()) | (User.name == identifier))
        .first()
    )
    if not user:
        raise AuthError("The user is not registered", field="email")
    if not _credential_matches(user, password, allow_empty):
        raise AuthError("Invalid password", field="password")
    return user


def sign_up(db: Session, user: schemas.UserCreate):
    db_user = create_user(db, user)
    return db_user, auth.create_user_token(db_user), AuthType.SIGNUP


def sign_in(db: Session, identifier: str, password: str):
    db_user = verify_credential(db, identifier, password)
    return db_user, auth.create_user_token(db_user), AuthType.SIGNIN


def update_credential(
    db: Session, user: User, old_password: str, new_password: str, allow_empty: Optional[bool] = None
) -> User:
    if allow_empty is None:
        allow_empty = config.ALLOW_EMPTY_PASSWORD_LOGIN
    if not _credential_matches(user, old_password, allow_empty):
        raise AuthError("Incorrect password", field="currentPassword")
    _check_password(new_password, field="newPassword")
    user.hashed_password = pwd_context.hash(new_password)
    db.commit()
    db.refresh(user)
    return user


def update_user(db: Session, user: User, data: schemas.UserUpdate) -> User:
    changes = data.model_dump(exclude_unset=True)
    for key in ("name", "email"):
        if key in changes and not changes[key]:
            raise ValidationError(f"The {key} cannot be empty", field=key)

    if changes.get("name") is not None and changes["name"] != user.name:
        if get_user_by_name(db, changes["name"]):
            raise ConflictError("User with that name already exists!", field="name")
    if changes.get("email") is not None:
        changes["email"] = changes["email"].lower()
        if changes["email"] != user.email and get_user_by_email(db, changes["email"]):
            raise ConflictError("User with that email already exists!", field="email")

    for key, value in changes.items():
        if isinstance(value, Enum):
            value = value.value
        setattr(user, key, value)
    _commit_unique(db)
    db.refresh(user)
    return user


# ========= 分类 =========
def create_category(db: Session, name: str) -> Category:
    # 不做重名校验
    category_name = (name or "").strip()
    if not category_name:
        raise ValidationError("Category name does not provided", field="name")
    category = Category(name=category_name)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def list_categories(db: Session):
    return db.query(Category).all()


# ========= 文章 =========
ARTICLE_POPULATE = ("author", "category", "likes", "comments")


def _replies_option():
    # 只预加载第一层回复，更深的回复按需加载
    return selectinload(Comment.replies).options(joinedload(Comment.author), selectinload(Comment.likes))


def _populate_options(populate: Iterable[str]):
    """按调用方需要的关联生成预加载选项。"""
    options = []
    for name in populate:
        if name == "author":
            options.append(joinedload(Article.author))
        elif name == "category":
            options.append(joinedload(Article.category))
        elif name == "likes":
            options.append(selectinload(Article.likes))
        elif name == "comments":
            options.append(
                selectinload(Article.comments).options(
                    joinedload(Comment.author),
                    selectinload(Comment.likes),
                    _replies_option(),
                )
            )
        else:
            raise ValueError(f"unknown relation {name!r}")
    return options


def _get_article(db: Session, article_id: int, populate: Iterable[str] = ()) -> Article:
    article = (
        db.query(Article)
        .options(*_populate_options(populate))
        .filter(Article.id == article_id)
        .first()
    )
    if not article:
        raise NotFoundError("Article not found")
    return article


def get_article(db: Session, article_id: int, populate: Iterable[str] = ARTICLE_POPULATE) -> Article:
    return _get_article(db, article_id, populate)


def create_article(db: Session, storage, article: schemas.ArticleCreate, image: Optional[bytes], author: User) -> Article:
    if not article.title or not article.title.strip():
        raise ValidationError("The article does not contain a title", field="title")
    if not article.description or not article.description.strip():
        raise ValidationError("Describe you article", field="description")
    if not article.category:
        raise ValidationError("You must specify a category for your article", field="category")

    category = db.query(Category).filter(Category.id == article.category).first()
    if not category:
        raise NotFoundError("The category not found", field="category")
    if not image:
        raise ValidationError("No files provided", field="file")

    # 上传失败时不写入任何数据
    uploaded = storage.upload(image)

    db_article = Article(
        title=article.title,
        description=article.description,
        image=uploaded,
        author_id=author.id,
        category_id=category.id,
    )
    db.add(db_article)
    db.commit()
    db.refresh(db_article)
    db.expire(author, ["articles"])
    logger.info("article %s created by user %s", db_article.id, author.id)
    return db_article


def _paginate(query, limit: int, offset: int):
    if offset:
        query = query.offset(offset)
    # limit=0 表示不限制
    if limit:
        query = query.limit(limit)
    return query


def list_articles(
    db: Session,
    category: Optional[int] = None,
    text: Optional[str] = None,
    limit: int = 0,
    offset: int = 0,
    sort: int = 0,
    populate: Iterable[str] = ARTICLE_POPULATE,
):
    """返回 (total, articles)。sort == 1 时最新的在前，否则按创建时间升序。"""
    query = db.query(Article)
    if category:
        query = query.filter(Article.category_id == category)
    if text:
        query = query.filter(func.lower(Article.title).contains(text.lower(), autoescape=True))

    total = query.count()
    if sort == 1:
        query = query.order_by(Article.created_at.desc(), Article.id.desc())
    else:
        query = query.order_by(Article.created_at.asc(), Article.id.asc())
    items = _paginate(query.options(*_populate_options(populate)), limit, offset).all()
    return total, items


def list_user_articles(
    db: Session,
    caller: User,
    favourite_articles: int = 0,
    my_articles: int = 0,
    user_id: Optional[int] = None,
    limit: int = 0,
    offset: int = 0,
    populate: Iterable[str] = ARTICLE_POPULATE,
):
    """收藏 / 我的 / 指定作者 三个条件同时生效（AND）。"""
    query = db.query(Article)
    if favourite_articles:
        favorite_ids = [a.id for a in caller.favorite_articles]
        query = query.filter(Article.id.in_(favorite_ids))
    if my_articles:
        query = query.filter(Article.author_id == caller.id)
    if user_id:
        query = query.filter(Article.author_id == user_id)

    total = query.count()
    query = query.order_by(Article.created_at.asc(), Article.id.asc())
    items = _paginate(query.options(*_populate_options(populate)), limit, offset).all()
    return total, items


def remove_article(db: Session, storage, article_id: int, caller: User) -> None:
    article = _get_article(db, article_id)
    if article.author_id != caller.id:
        raise AuthorizationError("You are not author of this article")

    removed_comments = 0
    for root in list(article.comments):
        removed_comments += _delete_comment_tree(db, root)
    for user in list(article.favorited_by):
        set_membership(user.favorite_articles, article, False)
    public_id = (article.image or {}).get("public_id")
    db.delete(article)
    db.commit()
    db.expire_all()
    logger.info("article %s removed with %s comments", article_id, removed_comments)

    # 图片删除失败不影响文章删除
    if public_id:
        try:
            storage.delete(public_id)
        except DependencyError:
            logger.warning("failed to delete image %s of article %s", public_id, article_id, exc_info=True)


def most_popular_article(db: Session, days: int = config.POPULAR_WINDOW_DAYS) -> Optional[Article]:
    since = datetime.utcnow() - timedelta(days=days)
    articles = (
        db.query(Article)
        .options(selectinload(Article.likes))
        .filter(Article.created_at >= since)
        .order_by(Article.created_at.asc(), Article.id.asc())
        .all()
    )
    if not articles:
        return None
    # 点赞数相同取先遇到的
    return max(articles, key=lambda a: len(a.likes))


def set_article_favorite(db: Session, article_id: int, user: User, to_favorite: bool) -> bool:
    article = _get_article(db, article_id)
    changed = set_membership(user.favorite_articles, article, to_favorite)
    return _commit_membership(db, changed)


def set_article_like(db: Session, article_id: int, user: User, to_like: bool) -> bool:
    article = _get_article(db, article_id)
    changed = set_membership(article.likes, user, to_like)
    return _commit_membership(db, changed)


# 评论相关CRUD操作
def _check_text(text: Optional[str]):
    if not text or not text.strip():
        raise ValidationError("Please add comment text", field="text")


def get_comment(db: Session, comment_id: int) -> Comment:
    comment = db.query(Comment).filter(Comment.id == comment_id).first()
    if not comment:
        raise NotFoundError("Comment not found")
    return comment


def add_comment(db: Session, article_id: int, text: str, author: User) -> Comment:
    """在文章下发表顶级评论"""
    article = _get_article(db, article_id)
    _check_text(text)
    comment = Comment(text=text, article_id=article.id, author_id=author.id)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    db.expire(article, ["comments"])
    return comment


def add_reply(db: Session, comment_id: int, text: str, author: User) -> Comment:
    """
    回复评论。

    main_parent 始终指向顶级评论：父评论本身是回复时沿用它的 main_parent，
    否则就是父评论自己。新回复只挂在直接父评论的 replies 下。
    """
    parent = get_comment(db, comment_id)
    _check_text(text)
    main_parent_id = parent.main_parent_id or parent.id
    reply = Comment(
        text=text,
        article_id=parent.article_id,
        author_id=author.id,
        main_parent_id=main_parent_id,
    )
    parent.replies.append(reply)
    db.commit()
    db.refresh(reply)
    return reply


def get_thread_replies(db: Session, root_id: int):
    """获取某条顶级评论下的全部回复（任意层级），按创建顺序"""
    return (
        db.query(Comment)
        .filter(Comment.main_parent_id == root_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )


def _delete_comment_tree(db: Session, comment: Comment) -> int:
    """后序删除：先删除所有子回复，再删除评论本身，返回删除的评论数量"""
    deleted_count = 0
    for reply in list(comment.replies):
        deleted_count += _delete_comment_tree(db, reply)
    db.delete(comment)
    return deleted_count + 1


def delete_comment(db: Session, comment_id: int, caller: User) -> int:
    """删除评论 - 只有评论作者可以删除，回复会被级联删除"""
    comment = get_comment(db, comment_id)
    if comment.author_id != caller.id:
        raise AuthorizationError("You are not the author of the comment")

    if comment.parent is not None:
        comment.parent.replies.remove(comment)
    total_deleted = _delete_comment_tree(db, comment)
    db.commit()
    db.expire_all()
    logger.info("comment %s removed (%s records)", comment_id, total_deleted)
    return total_deleted


def set_comment_like(db: Session, comment_id: int, user: User, to_like: bool) -> bool:
    comment = get_comment(db, comment_id)
    changed = set_membership(comment.likes, user, to_like)
    return _commit_membership(db, changed)
