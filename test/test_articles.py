from datetime import datetime, timedelta

import pytest

from live_articles import crud, schemas
from live_articles.errors import AuthorizationError, DependencyError, NotFoundError, ValidationError
from live_articles.models import Article, Comment, user_favorites


def test_create_article(db, storage, make_user, category):
    alice = make_user("alice")
    article = crud.create_article(
        db, storage, schemas.ArticleCreate(title="Hello", description="World", category=category.id), b"img", alice
    )

    assert article.author_id == alice.id
    assert article.category_id == category.id
    assert article.image["public_id"] in storage.blobs
    assert article.image["secure_url"].startswith("https://")
    assert [a.id for a in alice.articles] == [article.id]


@pytest.mark.parametrize(
    "data, field",
    [
        ({"title": "", "description": "d", "category": 1}, "title"),
        ({"title": "t", "description": " ", "category": 1}, "description"),
        ({"title": "t", "description": "d"}, "category"),
    ],
)
def test_create_article_requires_fields(db, storage, make_user, category, data, field):
    alice = make_user("alice")
    with pytest.raises(ValidationError) as exc:
        crud.create_article(db, storage, schemas.ArticleCreate(**data), b"img", alice)
    assert exc.value.field == field
    assert storage.blobs == {}


def test_create_article_unknown_category(db, storage, make_user):
    alice = make_user("alice")
    with pytest.raises(NotFoundError):
        crud.create_article(
            db, storage, schemas.ArticleCreate(title="t", description="d", category=99), b"img", alice
        )


def test_create_article_upload_failure_persists_nothing(db, storage, make_user, category):
    alice = make_user("alice")
    storage.fail_upload = True
    with pytest.raises(DependencyError):
        crud.create_article(
            db, storage, schemas.ArticleCreate(title="t", description="d", category=category.id), b"img", alice
        )
    assert db.query(Article).count() == 0


def test_get_article_not_found(db):
    with pytest.raises(NotFoundError):
        crud.get_article(db, 1)


def _spread_created_at(db, articles):
    base = datetime.utcnow() - timedelta(hours=len(articles))
    for i, article in enumerate(articles):
        article.created_at = base + timedelta(minutes=i)
    db.commit()


def test_list_articles_pagination(db, make_user, make_article):
    alice = make_user("alice")
    articles = [make_article(alice, title=f"post {i}") for i in range(5)]
    _spread_created_at(db, articles)

    total, items = crud.list_articles(db, limit=2, offset=1)
    assert total == 5
    assert [a.id for a in items] == [articles[1].id, articles[2].id]

    total, items = crud.list_articles(db, limit=0)
    assert total == 5
    assert len(items) == 5

    _, items = crud.list_articles(db, sort=1, limit=1)
    assert items[0].id == articles[-1].id


def test_list_articles_filters(db, make_user, make_article):
    alice = make_user("alice")
    other = crud.create_category(db, "Life")
    make_article(alice, title="Python tips")
    make_article(alice, title="Cooking 100%")
    make_article(alice, title="More PYTHON", category_id=other.id)

    total, items = crud.list_articles(db, text="python")
    assert total == 2
    total, items = crud.list_articles(db, text="python", category=other.id)
    assert [a.title for a in items] == ["More PYTHON"]
    total, _ = crud.list_articles(db, text="%")
    assert total == 1


def test_list_user_articles_combines_filters(db, make_user, make_article):
    alice = make_user("alice")
    bob = make_user("bob")
    mine = make_article(alice, title="mine")
    liked_mine = make_article(alice, title="liked mine")
    bobs = make_article(bob, title="bobs")
    crud.set_article_favorite(db, liked_mine.id, alice, True)
    crud.set_article_favorite(db, bobs.id, alice, True)

    total, items = crud.list_user_articles(db, alice, my_articles=1)
    assert total == 2
    total, items = crud.list_user_articles(db, alice, favourite_articles=1)
    assert {a.id for a in items} == {liked_mine.id, bobs.id}
    total, items = crud.list_user_articles(db, alice, favourite_articles=1, my_articles=1)
    assert [a.id for a in items] == [liked_mine.id]
    total, items = crud.list_user_articles(db, alice, user_id=bob.id)
    assert [a.id for a in items] == [bobs.id]
    total, items = crud.list_user_articles(db, bob, favourite_articles=1)
    assert total == 0 and items == []
    assert mine.id not in {a.id for a in crud.list_user_articles(db, alice, favourite_articles=1)[1]}


def test_remove_article_cascades(db, storage, make_user, make_article):
    alice = make_user("alice")
    bob = make_user("bob")
    article = make_article(alice)
    other = make_article(alice, title="other")
    public_id = article.image["public_id"]

    root = crud.add_comment(db, article.id, "root", bob)
    reply = crud.add_reply(db, root.id, "reply", alice)
    crud.add_reply(db, reply.id, "nested", bob)
    crud.add_comment(db, article.id, "second", alice)
    kept = crud.add_comment(db, other.id, "elsewhere", bob)
    crud.set_article_favorite(db, article.id, alice, True)
    crud.set_article_favorite(db, article.id, bob, True)
    crud.set_article_favorite(db, other.id, bob, True)
    crud.set_article_like(db, article.id, bob, True)

    crud.remove_article(db, storage, article.id, alice)

    assert db.query(Article).filter(Article.id == article.id).count() == 0
    assert [c.id for c in db.query(Comment).all()] == [kept.id]
    assert db.query(user_favorites).count() == 1
    assert {a.id for a in bob.favorite_articles} == {other.id}
    assert alice.favorite_articles == set()
    assert [a.id for a in alice.articles] == [other.id]
    assert storage.deleted == [public_id]


def test_remove_article_image_failure_is_not_fatal(db, storage, make_user, make_article):
    alice = make_user("alice")
    article = make_article(alice)
    storage.fail_delete = True

    crud.remove_article(db, storage, article.id, alice)
    assert db.query(Article).count() == 0


def test_remove_article_authorization(db, storage, make_user, make_article):
    alice = make_user("alice")
    bob = make_user("bob")
    article = make_article(alice)
    crud.add_comment(db, article.id, "root", alice)

    with pytest.raises(AuthorizationError):
        crud.remove_article(db, storage, article.id, bob)
    assert db.query(Article).count() == 1
    assert db.query(Comment).count() == 1
    assert storage.deleted == []

    with pytest.raises(NotFoundError):
        crud.remove_article(db, storage, 999, alice)


def test_most_popular_article(db, make_user, make_article):
    assert crud.most_popular_article(db) is None

    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    quiet = make_article(alice, title="quiet")
    popular = make_article(alice, title="popular")
    old = make_article(alice, title="old")
    for user in (alice, bob):
        crud.set_article_like(db, popular.id, user, True)
    for user in (alice, bob, carol):
        crud.set_article_like(db, old.id, user, True)
    crud.set_article_like(db, quiet.id, carol, True)
    old.created_at = datetime.utcnow() - timedelta(days=40)
    db.commit()

    assert crud.most_popular_article(db, days=30).id == popular.id
    assert crud.most_popular_article(db, days=60).id == old.id
