# Database models
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class User(db.Model):
    __tablename__ = 'Users'
    __table_args__ = (
        db.CheckConstraint(
            'password_hash IS NOT NULL OR firebase_uid IS NOT NULL',
            name='ck_users_has_credential'
        ),
    )

    user_id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(100), unique=True, nullable=False)
    # Absent for accounts that only sign in through the identity provider
    password_hash = db.Column(db.String(255), nullable=True)
    bio = db.Column(db.Text, nullable=True)
    profile_image = db.Column(db.String(500), nullable=True)
    firebase_uid = db.Column(db.String(128), unique=True, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    posts = db.relationship('Post', backref='author', lazy='dynamic')
    comments = db.relationship('Comment', backref='author', lazy='dynamic')
    likes = db.relationship('Like', backref='user', lazy='dynamic')
    following = db.relationship(
        'Follower', foreign_keys='Follower.follower_user_id',
        backref='follower', lazy='dynamic'
    )
    followers = db.relationship(
        'Follower', foreign_keys='Follower.followed_user_id',
        backref='followed', lazy='dynamic'
    )

    def __repr__(self):
        return f'<User {self.username}>'


class Post(db.Model):
    __tablename__ = 'Posts'
    post_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'), nullable=False, index=True
    )
    image_url = db.Column(db.String(500), nullable=False)
    caption = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    comments = db.relationship('Comment', backref='post', cascade='all, delete-orphan')
    likes = db.relationship('Like', backref='post', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Post {self.post_id} by {self.user_id}>'


class Comment(db.Model):
    __tablename__ = 'Comments'
    __table_args__ = (
        db.CheckConstraint("content <> ''", name='ck_comments_content_not_empty'),
    )

    comment_id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(
        db.Integer, db.ForeignKey('Posts.post_id', ondelete='CASCADE'), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'), nullable=False
    )
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Like(db.Model):
    __tablename__ = 'Likes'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'post_id', name='uq_likes_user_post'),
    )

    like_id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(
        db.Integer, db.ForeignKey('Posts.post_id', ondelete='CASCADE'), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'), nullable=False
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Follower(db.Model):
    __tablename__ = 'Followers'
    __table_args__ = (
        db.UniqueConstraint(
            'follower_user_id', 'followed_user_id', name='uq_followers_edge'
        ),
        db.CheckConstraint(
            'follower_user_id <> followed_user_id', name='ck_followers_no_self_follow'
        ),
    )

    follow_id = db.Column(db.Integer, primary_key=True)
    follower_user_id = db.Column(
        db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'), nullable=False, index=True
    )
    followed_user_id = db.Column(
        db.Integer, db.ForeignKey('Users.user_id', ondelete='CASCADE'), nullable=False, index=True
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
