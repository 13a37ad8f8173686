"""
HTTP client for the Photoshare API.

``ApiClient`` wraps one ``requests.Session``; its cookie jar carries the
HTTP-only session cookie between calls, so a logged-in client is simply a
client whose jar holds ``token``. ``AuthSession`` owns the signed-in user for a
front end, and ``Toggle`` drives optimistic like/follow buttons.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


@dataclass
class Page:
    items: List[Dict[str, Any]]
    current_page: int
    total_pages: int
    total_count: int

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages


def iter_pages(fetch: Callable[[int, int], Page], limit: int = 10) -> Iterator[Page]:
    """Yield pages from ``fetch(page, limit)`` starting at 1 until the last one."""
    page_number = 1
    while True:
        page = fetch(page_number, limit)
        yield page
        if not page.has_next:
            return
        page_number = page.current_page + 1


class ApiClient:
    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    # --- helpers ---
    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if not resp.ok:
            try:
                message = resp.json().get("message", resp.reason)
            except ValueError:
                message = resp.reason
            logger.debug("%s %s failed: %s %s", method, url, resp.status_code, message)
            raise ClientError(resp.status_code, message)
        if not resp.content:
            return None
        return resp.json()

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def _post(self, path: str, json_payload: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self._request("POST", path, json=json_payload, **kwargs)

    def _put(self, path: str, json_payload: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self._request("PUT", path, json=json_payload, **kwargs)

    def _delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    @staticmethod
    def _page(data: Dict[str, Any], key: str, total_key: str) -> Page:
        return Page(
            items=data[key],
            current_page=data["currentPage"],
            total_pages=data["totalPages"],
            total_count=data[total_key],
        )

    def clear_cookies(self) -> None:
        self.session.cookies.clear()

    # --- auth ---
    def register(self, username: str, email: str, password: str, name: str) -> Dict[str, Any]:
        return self._post("/auth/register", {
            "username": username, "email": email, "password": password, "name": name,
        })

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._post("/auth/login", {"email": email, "password": password})

    def google_login(self, id_token: str) -> Dict[str, Any]:
        return self._post("/auth/google", {"idToken": id_token})

    def logout(self) -> None:
        self._post("/auth/logout")

    def me(self) -> Dict[str, Any]:
        return self._get("/auth/me")

    # --- posts ---
    def create_post(self, image, filename: str, caption: Optional[str] = None,
                    mimetype: str = "image/jpeg") -> Dict[str, Any]:
        data = {"caption": caption} if caption else None
        return self._request("POST", "/posts", data=data, files={"image": (filename, image, mimetype)})

    def get_feed(self, page: int = 1, limit: int = 10) -> Page:
        data = self._get("/posts/feed", {"page": page, "limit": limit})
        return self._page(data, "posts", "totalPosts")

    def get_post(self, post_id: int) -> Dict[str, Any]:
        return self._get(f"/posts/{post_id}")

    def delete_post(self, post_id: int) -> None:
        self._delete(f"/posts/{post_id}")

    def like_post(self, post_id: int) -> Dict[str, Any]:
        return self._post(f"/posts/{post_id}/like")

    def unlike_post(self, post_id: int) -> None:
        self._delete(f"/posts/{post_id}/like")

    def add_comment(self, post_id: int, content: str) -> Dict[str, Any]:
        return self._post(f"/posts/{post_id}/comments", {"content": content})

    def get_comments(self, post_id: int, page: int = 1, limit: int = 10) -> Page:
        data = self._get(f"/posts/{post_id}/comments", {"page": page, "limit": limit})
        return self._page(data, "comments", "totalComments")

    def delete_comment(self, post_id: int, comment_id: int) -> None:
        self._delete(f"/posts/{post_id}/comments/{comment_id}")

    # --- users ---
    def get_profile(self, username: str) -> Dict[str, Any]:
        return self._get(f"/users/{username}")

    def update_profile(self, image=None, filename: str = "profile.jpg",
                       mimetype: str = "image/jpeg", **fields) -> Dict[str, Any]:
        if image is None:
            return self._put("/users/profile", fields)
        return self._request(
            "PUT", "/users/profile", data=fields,
            files={"profileImage": (filename, image, mimetype)},
        )

    def search_users(self, query: str) -> List[Dict[str, Any]]:
        return self._get("/users/search", {"query": query})

    def follow(self, user_id: int) -> None:
        self._post(f"/users/{user_id}/follow")

    def unfollow(self, user_id: int) -> None:
        self._delete(f"/users/{user_id}/follow")

    def get_followers(self, user_id: int, page: int = 1, limit: int = 10) -> Page:
        data = self._get(f"/users/{user_id}/followers", {"page": page, "limit": limit})
        return self._page(data, "followers", "totalCount")

    def get_following(self, user_id: int, page: int = 1, limit: int = 10) -> Page:
        data = self._get(f"/users/{user_id}/following", {"page": page, "limit": limit})
        return self._page(data, "following", "totalCount")

    def deactivate(self) -> None:
        self._put("/users/deactivate")

    def reactivate(self, email: str, password: str) -> Dict[str, Any]:
        return self._put("/users/reactivate", {"email": email, "password": password})


class AuthSession:
    """
    The signed-in user as seen by a front end.

    ``start()`` asks the API who the cookie belongs to; an unauthenticated
    answer leaves the session anonymous rather than failing. ``logout()`` and
    ``deactivate()`` always end anonymous with an empty cookie jar.
    """

    def __init__(self, client: ApiClient):
        self.client = client
        self.user: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.started = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def start(self) -> Optional[Dict[str, Any]]:
        self.error = None
        try:
            self.user = self.client.me()
        except ClientError as exc:
            if exc.status_code != 401:
                self.error = exc.message
                raise
            self.user = None
        finally:
            self.started = True
        return self.user

    def _sign_in(self, call: Callable[..., Dict[str, Any]], *args) -> Dict[str, Any]:
        self.error = None
        try:
            self.user = call(*args)
        except ClientError as exc:
            self.error = exc.message
            raise
        return self.user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._sign_in(self.client.login, email, password)

    def register(self, username: str, email: str, password: str, name: str) -> Dict[str, Any]:
        return self._sign_in(self.client.register, username, email, password, name)

    def login_with_google(self, id_token: str) -> Dict[str, Any]:
        return self._sign_in(self.client.google_login, id_token)

    def reactivate(self, email: str, password: str) -> Dict[str, Any]:
        return self._sign_in(self.client.reactivate, email, password)

    def update_user(self, **fields) -> None:
        if self.user is not None:
            self.user = {**self.user, **fields}

    def _end(self) -> None:
        self.user = None
        self.client.clear_cookies()

    def logout(self) -> None:
        try:
            self.client.logout()
        except ClientError as exc:
            logger.warning("Logout request failed: %s", exc.message)
        finally:
            self._end()

    def deactivate(self) -> None:
        self.error = None
        try:
            self.client.deactivate()
        except ClientError as exc:
            self.error = exc.message
            raise
        self._end()


class ToggleState(Enum):
    OFF = "off"
    ON = "on"
    PENDING_ON = "pending_on"
    PENDING_OFF = "pending_off"


@dataclass
class Toggle:
    """
    Optimistic on/off control backed by two API calls.

    ``toggle()`` moves to a pending state and adjusts ``count`` before the
    request, settles on success and restores the previous state and count on
    failure. A 409 while switching on means the server already agrees.
    """
    state: ToggleState
    count: int
    activate: Callable[[], Any]
    deactivate: Callable[[], Any]
    on_change: Optional[Callable[["Toggle"], None]] = None
    error: Optional[str] = field(default=None, init=False)

    @property
    def active(self) -> bool:
        return self.state in (ToggleState.ON, ToggleState.PENDING_ON)

    @property
    def pending(self) -> bool:
        return self.state in (ToggleState.PENDING_ON, ToggleState.PENDING_OFF)

    def _set(self, state: ToggleState, count: int) -> None:
        self.state = state
        self.count = count
        if self.on_change is not None:
            self.on_change(self)

    def toggle(self) -> ToggleState:
        if self.pending:
            return self.state

        previous_state, previous_count = self.state, self.count
        if self.state is ToggleState.ON:
            call, settled = self.deactivate, ToggleState.OFF
            self._set(ToggleState.PENDING_OFF, self.count - 1)
        else:
            call, settled = self.activate, ToggleState.ON
            self._set(ToggleState.PENDING_ON, self.count + 1)

        self.error = None
        try:
            call()
        except ClientError as exc:
            if not (exc.status_code == 409 and settled is ToggleState.ON):
                self.error = exc.message
                self._set(previous_state, previous_count)
                raise
        except requests.RequestException as exc:
            logger.warning("Toggle request failed: %s", exc)
            self.error = str(exc) or exc.__class__.__name__
            self._set(previous_state, previous_count)
            raise
        self._set(settled, self.count)
        return self.state


def like_toggle(client: ApiClient, post: Dict[str, Any], **kwargs) -> Toggle:
    return Toggle(
        state=ToggleState.ON if post.get("isLiked") else ToggleState.OFF,
        count=post.get("_count", {}).get("likes", 0),
        activate=lambda: client.like_post(post["id"]),
        deactivate=lambda: client.unlike_post(post["id"]),
        **kwargs,
    )


def follow_toggle(client: ApiClient, profile: Dict[str, Any], **kwargs) -> Toggle:
    return Toggle(
        state=ToggleState.ON if profile.get("isFollowing") else ToggleState.OFF,
        count=profile.get("_count", {}).get("followedBy", 0),
        activate=lambda: client.follow(profile["id"]),
        deactivate=lambda: client.unfollow(profile["id"]),
        **kwargs,
    )
