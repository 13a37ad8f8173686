# Routes for handling requests
import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import distinct, or_
from sqlalchemy.exc import IntegrityError

from photoshare import auth, media
from photoshare.errors import (
    BadRequest,
    Conflict,
    Forbidden,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from photoshare.forms import (
    get_form_data,
    get_image_upload,
    get_json_body,
    optional_field,
    parse_pagination,
    require_fields,
    validate_email,
    validate_password,
    validate_username,
)
from photoshare.models import Comment, Follower, Like, Post, User, db

logger = logging.getLogger(__name__)

PROFILE_RECENT_POSTS = 9
SEARCH_RESULT_LIMIT = 20

# Create blueprints for different route categories
main_bp = Blueprint('main', __name__)
auth_bp = Blueprint('auth', __name__)
posts_bp = Blueprint('posts', __name__)
users_bp = Blueprint('users', __name__)


# Response shaping

def _iso(value):
    return value.isoformat() if value else None


def _user_summary(user):
    return {
        "id": user.user_id,
        "username": user.username,
        "profileImage": user.profile_image
    }


def _auth_user(user):
    return {
        "id": user.user_id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "bio": user.bio,
        "profileImage": user.profile_image
    }


def _post_json(post, likes_count=0, comments_count=0, is_liked=None):
    data = {
        "id": post.post_id,
        "imageUrl": post.image_url,
        "caption": post.caption,
        "createdAt": _iso(post.created_at),
        "updatedAt": _iso(post.updated_at),
        "userId": post.user_id,
        "user": _user_summary(post.author),
        "_count": {"likes": int(likes_count), "comments": int(comments_count)}
    }
    if is_liked is not None:
        data["isLiked"] = is_liked
    return data


def _comment_json(comment):
    return {
        "id": comment.comment_id,
        "content": comment.content,
        "createdAt": _iso(comment.created_at),
        "updatedAt": _iso(comment.updated_at),
        "userId": comment.user_id,
        "postId": comment.post_id,
        "user": _user_summary(comment.author)
    }


def _follow_json(follow, user):
    return {
        "id": user.user_id,
        "username": user.username,
        "name": user.name,
        "profileImage": user.profile_image,
        "followId": follow.follow_id,
        "followSince": _iso(follow.created_at)
    }


def _page_json(key, items, pagination, total_key):
    return {
        key: items,
        "currentPage": pagination.page,
        "totalPages": pagination.pages,
        total_key: pagination.total
    }


# Query helpers

def _post_stats_query():
    """Posts joined with their like and comment counts."""
    return db.session.query(
        Post,
        db.func.count(distinct(Like.like_id)).label('likes_count'),
        db.func.count(distinct(Comment.comment_id)).label('comments_count')
    ).outerjoin(Like, Like.post_id == Post.post_id)\
     .outerjoin(Comment, Comment.post_id == Post.post_id)\
     .group_by(Post.post_id)


def _liked_post_ids(user_id, post_ids):
    if not post_ids:
        return set()
    rows = db.session.query(Like.post_id)\
        .filter(Like.user_id == user_id, Like.post_id.in_(post_ids))\
        .all()
    return {row.post_id for row in rows}


def _get_post_or_404(post_id):
    post = db.session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    return post


def _get_user_or_404(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _is_following(follower_id, followed_id):
    return Follower.query.filter_by(
        follower_user_id=follower_id,
        followed_user_id=followed_id
    ).first() is not None


@main_bp.route('/', methods=['GET'])
def welcome():
    """Health check for the API"""
    return jsonify({"message": "Photoshare API is running"}), 200


# Authentication Endpoints
@auth_bp.route('/register', methods=['POST'])
def register():
    """User Registration Endpoint"""
    data = get_json_body()
    username, email, password, name = require_fields(
        data, 'username', 'email', 'password', 'name'
    )
    username = username.strip()
    email = email.strip().lower()

    if not validate_username(username):
        raise ValidationError(
            "Username must be 3-30 characters of letters, digits, '_' or '.'"
        )
    if not validate_email(email):
        raise ValidationError("Invalid email format")
    if not validate_password(password):
        raise ValidationError("Password must be at least 6 characters")

    existing = User.query.filter(
        or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise Conflict("User already exists with that email or username")

    new_user = User(
        username=username,
        name=name.strip(),
        email=email,
        password_hash=auth.hash_password(password)
    )
    db.session.add(new_user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("User already exists with that email or username")

    logger.info("Registered user %s (id=%s)", new_user.username, new_user.user_id)
    response = jsonify(_auth_user(new_user))
    auth.issue_session(response, new_user)
    return response, 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """User Login Endpoint"""
    data = get_json_body()
    email, password = require_fields(data, 'email', 'password')

    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user:
        raise InvalidCredentials("Invalid credentials")

    # Accounts created through the identity provider have no password
    if not user.password_hash:
        raise InvalidCredentials("Please login with Google for this account")

    if not auth.check_password(user, password):
        raise InvalidCredentials("Invalid credentials")

    if not user.is_active:
        user.is_active = True
        db.session.commit()
        logger.info("Reactivated account %s on login", user.username)

    body = _auth_user(user)
    body["isActive"] = user.is_active
    response = jsonify(body)
    auth.issue_session(response, user)
    return response, 200


@auth_bp.route('/google', methods=['POST'])
def google_auth():
    """Exchange a Firebase ID token for a local session"""
    data = get_json_body()
    id_token = optional_field(data, 'idToken')
    if not id_token:
        raise ValidationError("ID token is required")

    identity = auth.verify_federated_token(id_token)
    if not identity.email:
        raise ValidationError("Email is required for authentication")

    user = auth.link_federated_user(identity)

    response = jsonify(_auth_user(user))
    auth.issue_session(response, user, federated_token=id_token)
    return response, 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    response = jsonify({"message": "Logged out successfully"})
    auth.clear_session(response)
    return response, 200


@auth_bp.route('/me', methods=['GET'])
@auth.login_required
def me():
    """Get the authenticated user"""
    user = auth.current_user()
    body = _auth_user(user)
    body.update({
        "createdAt": _iso(user.created_at),
        "authProvider": auth.session_provider(),
        "_count": {
            "posts": user.posts.count(),
            "followedBy": user.followers.count(),
            "following": user.following.count()
        }
    })
    return jsonify(body), 200


# Post Endpoints
@posts_bp.route('', methods=['POST'])
@auth.login_required
def create_post():
    user = auth.current_user()
    image = get_image_upload('image')
    caption = request.form.get('caption') or None

    image_url = media.upload_image(image)

    new_post = Post(
        user_id=user.user_id,
        image_url=image_url,
        caption=caption
    )
    db.session.add(new_post)
    db.session.commit()

    logger.info("User %s created post %s", user.user_id, new_post.post_id)
    return jsonify(_post_json(new_post, is_liked=False)), 201


@posts_bp.route('/feed', methods=['GET'])
@auth.login_required
def get_feed_posts():
    """Reverse-chronological posts from followed users and the requester"""
    user = auth.current_user()
    page, limit = parse_pagination()

    followed_ids = [
        row.followed_user_id for row in
        db.session.query(Follower.followed_user_id)
        .filter(Follower.follower_user_id == user.user_id)
        .all()
    ]
    followed_ids.append(user.user_id)

    pagination = _post_stats_query()\
        .filter(Post.user_id.in_(followed_ids))\
        .order_by(Post.created_at.desc(), Post.post_id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)

    rows = pagination.items
    liked = _liked_post_ids(user.user_id, [post.post_id for post, _, _ in rows])
    posts_data = [
        _post_json(post, likes_count, comments_count, is_liked=post.post_id in liked)
        for post, likes_count, comments_count in rows
    ]
    return jsonify(_page_json("posts", posts_data, pagination, "totalPosts")), 200


@posts_bp.route('/<int:post_id>', methods=['GET'])
@auth.login_required
def get_post(post_id):
    user = auth.current_user()
    row = _post_stats_query().filter(Post.post_id == post_id).first()
    if row is None:
        raise NotFound("Post not found")

    post, likes_count, comments_count = row
    is_liked = bool(_liked_post_ids(user.user_id, [post.post_id]))
    return jsonify(_post_json(post, likes_count, comments_count, is_liked=is_liked)), 200


@posts_bp.route('/<int:post_id>', methods=['DELETE'])
@auth.login_required
def delete_post(post_id):
    user = auth.current_user()
    post = _get_post_or_404(post_id)

    if post.user_id != user.user_id:
        raise Forbidden("Not authorized to delete this post")

    if post.image_url:
        media.delete_image(post.image_url)

    # Likes and comments go with the post
    db.session.delete(post)
    db.session.commit()

    logger.info("User %s deleted post %s", user.user_id, post_id)
    return jsonify({"message": "Post deleted"}), 200


@posts_bp.route('/<int:post_id>/like', methods=['POST'])
@auth.login_required
def like_post(post_id):
    user = auth.current_user()
    _get_post_or_404(post_id)

    existing_like = Like.query.filter_by(post_id=post_id, user_id=user.user_id).first()
    if existing_like:
        raise Conflict("Post already liked")

    new_like = Like(post_id=post_id, user_id=user.user_id)
    db.session.add(new_like)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Post already liked")

    return jsonify({
        "id": new_like.like_id,
        "userId": new_like.user_id,
        "postId": new_like.post_id,
        "createdAt": _iso(new_like.created_at)
    }), 201


@posts_bp.route('/<int:post_id>/like', methods=['DELETE'])
@auth.login_required
def unlike_post(post_id):
    user = auth.current_user()
    _get_post_or_404(post_id)

    Like.query.filter_by(post_id=post_id, user_id=user.user_id).delete()
    db.session.commit()
    return jsonify({"message": "Post unliked"}), 200


@posts_bp.route('/<int:post_id>/comments', methods=['POST'])
@auth.login_required
def add_comment(post_id):
    user = auth.current_user()
    data = get_json_body()

    content = data.get('content')
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Comment cannot be empty")

    _get_post_or_404(post_id)

    new_comment = Comment(
        content=content.strip(),
        post_id=post_id,
        user_id=user.user_id
    )
    db.session.add(new_comment)
    db.session.commit()

    return jsonify(_comment_json(new_comment)), 201


@posts_bp.route('/<int:post_id>/comments', methods=['GET'])
@auth.login_required
def get_comments(post_id):
    page, limit = parse_pagination()
    _get_post_or_404(post_id)

    pagination = Comment.query.filter_by(post_id=post_id)\
        .order_by(Comment.created_at.desc(), Comment.comment_id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)

    comments_data = [_comment_json(comment) for comment in pagination.items]
    return jsonify(_page_json("comments", comments_data, pagination, "totalComments")), 200


@posts_bp.route('/<int:post_id>/comments/<int:comment_id>', methods=['DELETE'])
@auth.login_required
def delete_comment(post_id, comment_id):
    user = auth.current_user()

    comment = db.session.get(Comment, comment_id)
    if comment is None:
        raise NotFound("Comment not found")

    if comment.post_id != post_id:
        raise BadRequest("Comment does not belong to the post")

    # The comment's author and the post's owner may both remove it
    if user.user_id not in (comment.user_id, comment.post.user_id):
        raise Forbidden("Not authorized to delete this comment")

    db.session.delete(comment)
    db.session.commit()
    return jsonify({"message": "Comment deleted"}), 200


# User Endpoints
@users_bp.route('/deactivate', methods=['PUT'])
@auth.login_required
def deactivate_account():
    user = auth.current_user()
    user.is_active = False
    db.session.commit()

    logger.info("Deactivated account %s", user.username)
    response = jsonify({"message": "Account deactivated successfully"})
    auth.clear_session(response)
    return response, 200


@users_bp.route('/reactivate', methods=['PUT'])
def reactivate_account():
    data = get_json_body()
    email, password = require_fields(
        data, 'email', 'password', message="Email and password are required"
    )

    user = User.query.filter_by(email=email.strip().lower()).first()
    if not user:
        raise NotFound("User not found")

    if user.is_active:
        raise BadRequest("Account is already active")

    if not user.password_hash:
        raise InvalidCredentials("Please use Google login to reactivate your account")

    if not auth.check_password(user, password):
        raise InvalidCredentials("Invalid credentials")

    user.is_active = True
    db.session.commit()

    logger.info("Reactivated account %s", user.username)
    response = jsonify(_auth_user(user))
    auth.issue_session(response, user)
    return response, 200


@users_bp.route('/search', methods=['GET'])
@auth.login_required
def search_users():
    user = auth.current_user()
    query = (request.args.get('query') or '').strip()
    if not query:
        raise ValidationError("Search query is required")

    escaped = query.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    pattern = f'%{escaped}%'
    matches = User.query.filter(
        or_(
            User.username.ilike(pattern, escape='\\'),
            User.name.ilike(pattern, escape='\\')
        ),
        User.user_id != user.user_id
    ).order_by(User.username.asc())\
     .limit(SEARCH_RESULT_LIMIT)\
     .all()

    match_ids = [match.user_id for match in matches]
    followed = set()
    if match_ids:
        followed = {
            row.followed_user_id for row in
            db.session.query(Follower.followed_user_id)
            .filter(
                Follower.follower_user_id == user.user_id,
                Follower.followed_user_id.in_(match_ids)
            ).all()
        }

    results = []
    for match in matches:
        results.append({
            "id": match.user_id,
            "username": match.username,
            "name": match.name,
            "profileImage": match.profile_image,
            "isFollowing": match.user_id in followed,
            "_count": {
                "posts": match.posts.count(),
                "followedBy": match.followers.count()
            }
        })
    return jsonify(results), 200


@users_bp.route('/profile', methods=['PUT'])
@auth.login_required
def update_user_profile():
    """Partial update of the current user's profile"""
    user = auth.current_user()
    data = get_form_data()

    if 'name' in data:
        name = (optional_field(data, 'name') or '').strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        user.name = name

    if 'bio' in data:
        user.bio = optional_field(data, 'bio') or None

    new_username = optional_field(data, 'username')
    if new_username is not None and new_username.strip() != user.username:
        new_username = new_username.strip()
        if not validate_username(new_username):
            raise ValidationError(
                "Username must be 3-30 characters of letters, digits, '_' or '.'"
            )
        taken = User.query.filter(
            User.username == new_username,
            User.user_id != user.user_id
        ).first()
        if taken:
            raise Conflict("Username is already taken")
        user.username = new_username

    image = get_image_upload('profileImage', required=False)
    old_image = user.profile_image
    new_image = None
    if image is not None:
        new_image = media.upload_image(image)
        user.profile_image = new_image

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if new_image is not None:
            media.delete_image(new_image)
        raise Conflict("Username is already taken")

    if new_image is not None and media.is_hosted(old_image):
        media.delete_image(old_image)

    return jsonify(_auth_user(user)), 200


@users_bp.route('/<username>', methods=['GET'])
@auth.login_required
def get_user_profile(username):
    current = auth.current_user()
    user = User.query.filter_by(username=username).first()
    if not user:
        raise NotFound("User not found")

    recent = _post_stats_query()\
        .filter(Post.user_id == user.user_id)\
        .order_by(Post.created_at.desc(), Post.post_id.desc())\
        .limit(PROFILE_RECENT_POSTS)\
        .all()

    posts_data = [{
        "id": post.post_id,
        "imageUrl": post.image_url,
        "caption": post.caption,
        "createdAt": _iso(post.created_at),
        "_count": {"likes": int(likes_count), "comments": int(comments_count)}
    } for post, likes_count, comments_count in recent]

    return jsonify({
        "id": user.user_id,
        "username": user.username,
        "name": user.name,
        "bio": user.bio,
        "profileImage": user.profile_image,
        "createdAt": _iso(user.created_at),
        "isFollowing": _is_following(current.user_id, user.user_id),
        "_count": {
            "posts": user.posts.count(),
            "followedBy": user.followers.count(),
            "following": user.following.count()
        },
        "posts": posts_data
    }), 200


@users_bp.route('/<int:user_id>/follow', methods=['POST'])
@auth.login_required
def follow_user(user_id):
    current = auth.current_user()
    _get_user_or_404(user_id)

    if current.user_id == user_id:
        raise BadRequest("You cannot follow yourself")

    if _is_following(current.user_id, user_id):
        raise Conflict("Already following this user")

    db.session.add(Follower(follower_user_id=current.user_id, followed_user_id=user_id))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Already following this user")

    return jsonify({"message": "Successfully followed user"}), 201


@users_bp.route('/<int:user_id>/follow', methods=['DELETE'])
@auth.login_required
def unfollow_user(user_id):
    current = auth.current_user()
    _get_user_or_404(user_id)

    Follower.query.filter_by(
        follower_user_id=current.user_id,
        followed_user_id=user_id
    ).delete()
    db.session.commit()
    return jsonify({"message": "Successfully unfollowed user"}), 200


@users_bp.route('/<int:user_id>/followers', methods=['GET'])
@auth.login_required
def get_followers(user_id):
    """Users following *user_id*, newest edge first"""
    page, limit = parse_pagination()
    _get_user_or_404(user_id)

    pagination = db.session.query(Follower, User)\
        .join(User, User.user_id == Follower.follower_user_id)\
        .filter(Follower.followed_user_id == user_id)\
        .order_by(Follower.created_at.desc(), Follower.follow_id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)

    followers_data = [_follow_json(follow, follower) for follow, follower in pagination.items]
    return jsonify(_page_json("followers", followers_data, pagination, "totalCount")), 200


@users_bp.route('/<int:user_id>/following', methods=['GET'])
@auth.login_required
def get_following(user_id):
    """Users *user_id* follows, newest edge first"""
    page, limit = parse_pagination()
    _get_user_or_404(user_id)

    pagination = db.session.query(Follower, User)\
        .join(User, User.user_id == Follower.followed_user_id)\
        .filter(Follower.follower_user_id == user_id)\
        .order_by(Follower.created_at.desc(), Follower.follow_id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)

    following_data = [_follow_json(follow, followed) for follow, followed in pagination.items]
    return jsonify(_page_json("following", following_data, pagination, "totalCount")), 200
