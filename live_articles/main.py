import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, config, crud, deps, models, schemas
from .errors import AuthError, AuthorizationError, LiveArticlesError, NotFoundError, ValidationError
from .storage import CloudinaryStorage

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Live Articles",
    description="Articles, categories and threaded comments",
    version="1.0.0",
)

_storage = CloudinaryStorage()


@app.on_event("startup")
def on_startup():
    # 启动时自动创建表
    models.Base.metadata.create_all(bind=deps.engine)


@app.exception_handler(LiveArticlesError)
async def handle_live_articles_error(request: Request, exc: LiveArticlesError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "field": exc.field},
    )


# 请求体/参数校验失败时也返回统一的错误结构，field 取出错位置的最后一段
@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header", "form")]
    error = ValidationError(first.get("msg", "Invalid request"), loc[-1] if loc else None)
    return await handle_live_articles_error(request, error)


def ok(data=None, status_code: int = 200):
    return JSONResponse(status_code=status_code, content={"success": True, "data": jsonable_encoder(data)})


def get_storage():
    return _storage


def get_current_user(request: Request, db: Session = Depends(deps.get_db)) -> models.User:
    """支持 `Authorization: Bearer <token>` 和 `Authorization: Token <token>`"""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme not in ("Bearer", "Token") or not token:
        raise AuthError("User not authenticated")
    return auth.get_current_user(db, token.strip())


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != models.Role.ADMIN.value:
        raise AuthorizationError("You are not an admin")
    return user


def _auth_payload(user, token, auth_type):
    return schemas.AuthOut(user=schemas.UserDetail.model_validate(user), token=token, authType=auth_type.value)


def _article_page(total, articles):
    return schemas.ArticlePage(total=total, result=[schemas.ArticleOut.model_validate(a) for a in articles])


# ========= 认证 =========
@app.post("/api/auth/signup")
def signup(body: schemas.UserCreate, db: Session = Depends(deps.get_db)):
    user, token, auth_type = crud.sign_up(db, body)
    return ok(_auth_payload(user, token, auth_type), status_code=201)


@app.post("/api/auth/signin")
def signin(body: schemas.UserLogin, db: Session = Depends(deps.get_db)):
    user, token, auth_type = crud.sign_in(db, body.email, body.password)
    return ok(_auth_payload(user, token, auth_type))


@app.post("/api/auth/update-password")
def update_password(
    body: schemas.PasswordUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    user = crud.update_credential(db, user, body.currentPassword, body.newPassword)
    return ok({"user": schemas.UserDetail.model_validate(user), "token": auth.create_user_token(user)})


# ========= 用户 =========
@app.get("/api/user/me")
def me(user: models.User = Depends(get_current_user)):
    return ok(schemas.UserDetail.model_validate(user))


@app.get("/api/user/profile/{user_id}")
def profile(user_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(deps.get_db)):
    return ok(schemas.UserDetail.model_validate(crud.get_user(db, user_id)))


@app.post("/api/user/update")
def update_profile(
    body: schemas.UserUpdate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    return ok(schemas.UserDetail.model_validate(crud.update_user(db, user, body)))


# ========= 分类 =========
@app.post("/api/category/create")
def create_category(
    body: schemas.CategoryCreate,
    user: models.User = Depends(require_admin),
    db: Session = Depends(deps.get_db),
):
    return ok(schemas.CategoryOut.model_validate(crud.create_category(db, body.name)))


@app.get("/api/category")
def list_categories(user: models.User = Depends(get_current_user), db: Session = Depends(deps.get_db)):
    return ok([schemas.CategoryOut.model_validate(c) for c in crud.list_categories(db)])


# ========= 文章 =========
@app.post("/api/articles/create")
def create_article(
    title: str = Form(""),
    description: str = Form(""),
    category: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
    storage=Depends(get_storage),
):
    category = category.strip()
    if category and not category.isdigit():
        raise NotFoundError("The category not found", field="category")
    image = file.file.read() if file is not None else None
    if image and len(image) > config.MAX_IMAGE_BYTES:
        raise ValidationError("The image is too large", field="file")

    article_in = schemas.ArticleCreate(
        title=title, description=description, category=int(category) if category else None
    )
    article = crud.create_article(db, storage, article_in, image, user)
    return ok(schemas.ArticleOut.model_validate(crud.get_article(db, article.id)))


@app.get("/api/articles")
def list_articles(
    limit: int = 0,
    offset: int = 0,
    sort: int = 0,
    category: Optional[int] = None,
    text: Optional[str] = None,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    total, articles = crud.list_articles(
        db, category=category, text=text, limit=limit, offset=offset, sort=sort
    )
    return ok(_article_page(total, articles))


@app.get("/api/articles/user-articles")
def list_user_articles(
    favouriteArticles: int = 0,
    myArticles: int = 0,
    user_id: Optional[int] = None,
    limit: int = 0,
    offset: int = 0,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    total, articles = crud.list_user_articles(
        db,
        user,
        favourite_articles=favouriteArticles,
        my_articles=myArticles,
        user_id=user_id,
        limit=limit,
        offset=offset,
    )
    return ok(_article_page(total, articles))


@app.get("/api/articles/popular")
def most_popular(user: models.User = Depends(get_current_user), db: Session = Depends(deps.get_db)):
    article = crud.most_popular_article(db)
    if article is None:
        return ok(None)
    return ok(schemas.ArticleOut.model_validate(crud.get_article(db, article.id)))


@app.get("/api/articles/{article_id}")
def read_article(article_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(deps.get_db)):
    return ok(schemas.ArticleOut.model_validate(crud.get_article(db, article_id)))


@app.post("/api/articles/{article_id}/favorite")
def favorite_article(
    article_id: int,
    body: schemas.FavoriteToggle,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    crud.set_article_favorite(db, article_id, user, body.toFavorite)
    return ok()


@app.post("/api/articles/{article_id}/like")
def like_article(
    article_id: int,
    body: schemas.LikeToggle,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    crud.set_article_like(db, article_id, user, body.toLike)
    return ok()


@app.post("/api/articles/{article_id}/remove")
def remove_article(
    article_id: int,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
    storage=Depends(get_storage),
):
    crud.remove_article(db, storage, article_id, user)
    return ok()


@app.post("/api/articles/{article_id}/comment")
def comment_article(
    article_id: int,
    body: schemas.CommentCreate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    comment = crud.add_comment(db, article_id, body.text, user)
    return ok(schemas.CommentOut.model_validate(comment))


# 评论相关API
@app.post("/api/comment/{comment_id}/reply")
def reply_comment(
    comment_id: int,
    body: schemas.CommentCreate,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    reply = crud.add_reply(db, comment_id, body.text, user)
    return ok(schemas.CommentOut.model_validate(reply))


@app.post("/api/comment/{comment_id}/like")
def like_comment(
    comment_id: int,
    body: schemas.LikeToggle,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    crud.set_comment_like(db, comment_id, user, body.toLike)
    return ok()


@app.post("/api/comment/{comment_id}/delete")
def delete_comment(
    comment_id: int,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(deps.get_db),
):
    deleted = crud.delete_comment(db, comment_id, user)
    return ok({"deleted": deleted})
