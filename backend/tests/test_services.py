"""Tests for the resource pipeline (ResourceService) with tenancy disabled."""

import pytest

from lumina.errors import Forbidden, RecordNotFound, Unauthenticated, UnknownResource, ValidationFailed
from lumina.query.directives import QueryDirectives


def query(**params) -> QueryDirectives:
    return QueryDirectives.from_query_params(params.items())


def bracket(*pairs) -> QueryDirectives:
    return QueryDirectives.from_query_params(pairs)


@pytest.fixture
def service(container):
    return container.resources


@pytest.fixture
def users(seed):
    return seed.admin_and_member()


@pytest.fixture
def admin_ctx(users, make_ctx):
    return make_ctx(users[0])


@pytest.fixture
def member_ctx(users, make_ctx):
    return make_ctx(users[1])


@pytest.fixture
def blog(service, admin_ctx):
    return service.store(admin_ctx, "blogs", {"title": "Engineering", "description": "Notes"})


@pytest.fixture
def posts(service, admin_ctx, blog):
    return [
        service.store(admin_ctx, "posts", {"blog_id": blog["id"], "title": title, "status": status})
        for title, status in [("Alpha", "published"), ("Beta", "draft"), ("Gamma", "published")]
    ]


class TestGate:
    def test_unknown_resource(self, service, admin_ctx):
        with pytest.raises(UnknownResource):
            service.index(admin_ctx, "invoices", query())

    def test_excluded_action_is_unknown(self, service, admin_ctx):
        tag = service.store(admin_ctx, "tags", {"name": "news"})
        with pytest.raises(UnknownResource):
            service.destroy(admin_ctx, "tags", tag["id"])

    def test_soft_delete_actions_need_soft_deletes(self, service, admin_ctx):
        with pytest.raises(UnknownResource):
            service.trashed(admin_ctx, "comments", query())

    def test_anonymous_caller(self, service, make_ctx):
        with pytest.raises(Unauthenticated):
            service.index(make_ctx(), "posts", query())

    def test_public_action(self, service, admin_ctx, make_ctx):
        service.store(admin_ctx, "tags", {"name": "news"})
        page = service.index(make_ctx(), "tags", query())
        assert [t["name"] for t in page.records] == ["news"]

    def test_public_resource_still_guards_writes(self, service, make_ctx):
        with pytest.raises(Unauthenticated):
            service.store(make_ctx(), "tags", {"name": "news"})

    def test_missing_permission(self, service, member_ctx, posts):
        with pytest.raises(Forbidden):
            service.destroy(member_ctx, "posts", posts[0]["id"])

    def test_middleware_runs_before_policy(self, service, seed, make_ctx, posts):
        unverified = seed.user("new@example.com", "member", verified=False)
        with pytest.raises(Forbidden, match="not verified"):
            service.store(make_ctx(unverified), "comments", {"post_id": posts[0]["id"], "body": "Hello"})

    def test_user_without_role(self, service, seed, make_ctx):
        loner = seed.user("loner@example.com")
        with pytest.raises(Forbidden):
            service.index(make_ctx(loner), "blogs", query())


class TestStore:
    def test_store_returns_the_record(self, blog):
        assert blog["id"] == 1
        assert blog["title"] == "Engineering"
        assert blog["organization_id"] is None
        assert blog["created_at"] and blog["created_at"] == blog["updated_at"]
        assert blog["deleted_at"] is None

    def test_validation_failure(self, service, admin_ctx):
        with pytest.raises(ValidationFailed) as exc:
            service.store(admin_ctx, "blogs", {"description": "No title"})
        assert exc.value.errors == {"title": ["The title field is required."]}

    def test_managed_columns_come_from_the_engine(self, service, admin_ctx):
        blog = service.store(admin_ctx, "blogs", {"title": "T", "created_at": "1999-01-01", "id": 99})
        assert blog["id"] != 99
        assert blog["created_at"] != "1999-01-01"

    def test_role_contract_drops_fields(self, service, member_ctx, blog):
        post = service.store(
            member_ctx, "posts", {"blog_id": blog["id"], "title": "Mine", "status": "published"}
        )
        assert post["status"] == "draft"

    def test_admin_contract_accepts_more_fields(self, service, admin_ctx, blog):
        post = service.store(
            admin_ctx, "posts", {"blog_id": str(blog["id"]), "title": "Theirs", "status": "published"}
        )
        assert post["status"] == "published"
        assert post["blog_id"] == blog["id"]

    def test_unique_rule(self, service, admin_ctx):
        service.store(admin_ctx, "tags", {"name": "news"})
        with pytest.raises(ValidationFailed) as exc:
            service.store(admin_ctx, "tags", {"name": "news"})
        assert exc.value.errors == {"name": ["The name has already been taken."]}

    def test_hidden_fields_are_stripped(self, service, admin_ctx, blog):
        post = service.store(
            admin_ctx, "posts", {"blog_id": blog["id"], "title": "Secret", "internal_notes": "x"}
        )
        assert "internal_notes" not in post


class TestUpdate:
    def test_update_changes_fields(self, service, admin_ctx, blog):
        updated = service.update(admin_ctx, "blogs", blog["id"], {"title": "Platform"})
        assert updated["title"] == "Platform"
        assert updated["description"] == "Notes"

    def test_sometimes_allows_partial_payloads(self, service, admin_ctx, blog):
        updated = service.update(admin_ctx, "blogs", blog["id"], {"description": "New"})
        assert updated["title"] == "Engineering"

    def test_unique_ignores_the_row_itself(self, service, admin_ctx):
        tag = service.store(admin_ctx, "tags", {"name": "news"})
        updated = service.update(admin_ctx, "tags", tag["id"], {"name": "news", "color": "#00ff00"})
        assert updated["color"] == "#00ff00"

    def test_member_cannot_change_status(self, service, member_ctx, posts):
        updated = service.update(member_ctx, "posts", posts[1]["id"], {"status": "published"})
        assert updated["status"] == "draft"

    def test_missing_row(self, service, admin_ctx):
        with pytest.raises(RecordNotFound):
            service.update(admin_ctx, "blogs", 404, {"title": "x"})

    def test_malformed_id_is_not_found(self, service, admin_ctx):
        with pytest.raises(RecordNotFound):
            service.show(admin_ctx, "blogs", "abc", query())


class TestSoftDeletes:
    def test_destroy_moves_to_trash(self, service, admin_ctx, blog):
        trashed = service.destroy(admin_ctx, "blogs", blog["id"])
        assert trashed["deleted_at"] is not None
        with pytest.raises(RecordNotFound):
            service.show(admin_ctx, "blogs", blog["id"], query())
        assert service.index(admin_ctx, "blogs", query()).records == []
        assert [b["id"] for b in service.trashed(admin_ctx, "blogs", query()).records] == [blog["id"]]

    def test_restore(self, service, admin_ctx, blog):
        service.destroy(admin_ctx, "blogs", blog["id"])
        restored = service.restore(admin_ctx, "blogs", blog["id"])
        assert restored["deleted_at"] is None
        assert service.show(admin_ctx, "blogs", blog["id"], query())["title"] == "Engineering"

    def test_restore_requires_a_trashed_row(self, service, admin_ctx, blog):
        with pytest.raises(RecordNotFound):
            service.restore(admin_ctx, "blogs", blog["id"])

    def test_force_delete_trashed_row(self, service, admin_ctx, blog):
        service.destroy(admin_ctx, "blogs", blog["id"])
        service.force_delete(admin_ctx, "blogs", blog["id"])
        assert service.trashed(admin_ctx, "blogs", query()).records == []

    def test_destroy_without_soft_deletes_is_permanent(self, service, admin_ctx, posts):
        comment = service.store(admin_ctx, "comments", {"post_id": posts[0]["id"], "body": "Nice post"})
        deleted = service.destroy(admin_ctx, "comments", comment["id"])
        assert deleted["id"] == comment["id"]
        with pytest.raises(RecordNotFound):
            service.show(admin_ctx, "comments", comment["id"], query())

    def test_trashed_rows_leave_listings(self, service, admin_ctx, posts):
        service.destroy(admin_ctx, "posts", posts[0]["id"])
        page = service.index(admin_ctx, "posts", query(sort="title"))
        assert [p["title"] for p in page.records] == ["Beta", "Gamma"]


class TestListing:
    def test_default_pagination(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", query(sort="title"))
        assert [p["title"] for p in page.records] == ["Alpha", "Beta"]
        assert page.headers() == {
            "X-Current-Page": "1",
            "X-Last-Page": "2",
            "X-Per-Page": "2",
            "X-Total": "3",
        }

    def test_second_page(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", query(sort="title", page="2"))
        assert [p["title"] for p in page.records] == ["Gamma"]

    def test_per_page_is_capped(self, service, admin_ctx, posts):
        service.compiler.max_per_page = 1
        page = service.index(admin_ctx, "posts", query(per_page="50"))
        assert page.per_page == 1
        assert len(page.records) == 1

    def test_unpaginated_resource(self, service, admin_ctx):
        for name in ("b", "a", "c"):
            service.store(admin_ctx, "tags", {"name": name})
        page = service.index(admin_ctx, "tags", query())
        assert [t["name"] for t in page.records] == ["a", "b", "c"]
        assert page.per_page is None
        assert page.headers()["X-Per-Page"] == "3"

    def test_filter(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", bracket(("filter[status]", "published"), ("sort", "title")))
        assert [p["title"] for p in page.records] == ["Alpha", "Gamma"]

    def test_filter_values_are_ored(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", bracket(("filter[status]", "published,draft")))
        assert page.total == 3

    def test_filter_outside_allow_list_is_ignored(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", bracket(("filter[title]", "Alpha")))
        assert page.total == 3

    def test_sort_descending(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", bracket(("sort", "-title"), ("per_page", "3")))
        assert [p["title"] for p in page.records] == ["Gamma", "Beta", "Alpha"]

    def test_sort_outside_allow_list_uses_default(self, service, admin_ctx, blog):
        for title in ("b", "a"):
            service.store(admin_ctx, "blogs", {"title": title})
        page = service.index(admin_ctx, "blogs", query(sort="description"))
        assert [b["title"] for b in page.records] == ["Engineering", "a", "b"]

    def test_search(self, service, admin_ctx, posts):
        page = service.index(admin_ctx, "posts", query(search="ALP"))
        assert [p["title"] for p in page.records] == ["Alpha"]

    def test_search_through_relation(self, service, admin_ctx, posts):
        other = service.store(admin_ctx, "blogs", {"title": "Marketing"})
        service.store(admin_ctx, "posts", {"blog_id": other["id"], "title": "Launch"})
        page = service.index(admin_ctx, "posts", query(search="market"))
        assert [p["title"] for p in page.records] == ["Launch"]

    def test_search_escapes_wildcards(self, service, admin_ctx, posts):
        assert service.index(admin_ctx, "posts", query(search="%")).records == []


class TestIncludes:
    def test_belongs_to(self, service, admin_ctx, blog, posts):
        post = service.show(admin_ctx, "posts", posts[0]["id"], query(include="blog"))
        assert post["blog"]["title"] == "Engineering"

    def test_has_many(self, service, admin_ctx, posts):
        service.store(admin_ctx, "comments", {"post_id": posts[0]["id"], "body": "First!"})
        service.store(admin_ctx, "comments", {"post_id": posts[0]["id"], "body": "Second"})
        post = service.show(admin_ctx, "posts", posts[0]["id"], query(include="comments"))
        assert [c["body"] for c in post["comments"]] == ["First!", "Second"]

    def test_nested_include(self, service, admin_ctx, blog, posts):
        service.store(admin_ctx, "comments", {"post_id": posts[0]["id"], "body": "First!"})
        page = service.index(admin_ctx, "blogs", query(include="posts.comments"))
        included = {p["title"]: p["comments"] for p in page.records[0]["posts"]}
        assert [c["body"] for c in included["Alpha"]] == ["First!"]
        assert included["Beta"] == []

    def test_include_outside_allow_list_is_dropped(self, service, admin_ctx, posts):
        post = service.show(admin_ctx, "posts", posts[0]["id"], query(include="author,blog"))
        assert "author" not in post
        assert "blog" in post

    def test_aggregates(self, service, admin_ctx, posts):
        service.store(admin_ctx, "comments", {"post_id": posts[0]["id"], "body": "First!"})
        page = service.index(admin_ctx, "posts", query(include="commentsCount,commentsExists", sort="title"))
        counts = [(p["title"], p["comments_count"], p["comments_exists"]) for p in page.records]
        assert counts == [("Alpha", 1, True), ("Beta", 0, False)]

    def test_include_requires_list_permission(self, service, seed, make_ctx, posts):
        seed.role("reader", ["posts.index", "posts.show"])
        reader = seed.user("reader@example.com", "reader")
        with pytest.raises(Forbidden):
            service.index(make_ctx(reader), "posts", query(include="comments"))
        assert service.index(make_ctx(reader), "posts", query()).total == 3

    def test_hidden_fields_stay_hidden_in_includes(self, service, admin_ctx, blog):
        service.store(admin_ctx, "posts", {"blog_id": blog["id"], "title": "T", "internal_notes": "x"})
        record = service.show(admin_ctx, "blogs", blog["id"], query(include="posts"))
        assert record["posts"][0]["title"] == "T"
        assert "internal_notes" not in record["posts"][0]


class TestFieldSelection:
    def test_select_fields(self, service, admin_ctx, posts):
        post = service.show(admin_ctx, "posts", posts[0]["id"], bracket(("fields[posts]", "title")))
        assert post == {"id": posts[0]["id"], "title": "Alpha"}

    def test_unlisted_fields_are_ignored(self, service, admin_ctx, posts):
        post = service.show(admin_ctx, "posts", posts[0]["id"], bracket(("fields[posts]", "body")))
        assert "status" in post and "title" in post

    def test_select_fields_of_includes(self, service, admin_ctx, blog, posts):
        post = service.show(
            admin_ctx,
            "posts",
            posts[0]["id"],
            bracket(("include", "blog"), ("fields[blogs]", "title"), ("fields[posts]", "title,blog_id")),
        )
        assert post == {
            "id": posts[0]["id"],
            "title": "Alpha",
            "blog_id": blog["id"],
            "blog": {"id": blog["id"], "title": "Engineering"},
        }
