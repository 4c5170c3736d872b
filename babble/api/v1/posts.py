"""
Chat post endpoints, nested under a topic.

- POST /topics/{topic_id}/posts
- PUT /topics/{topic_id}/posts/{post_id}
- DELETE /topics/{topic_id}/posts/{post_id}
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from babble.api.v1.deps import get_post_service
from babble.core.auth import get_principal
from babble.core.records import Principal
from babble.services.posts import PostService
from babble.services.shapes import post_read
from babble_shared.schemas.posts import PostCreate, PostDeleted, PostRead, PostUpdate

router = APIRouter()


@router.post("", response_model=PostRead, status_code=201)
async def create_post_endpoint(
    topic_id: int,
    body: PostCreate,
    principal: Principal = Depends(get_principal),
    posts: PostService = Depends(get_post_service),
):
    """Post a message; subscribers of the topic receive it immediately."""
    post = await posts.create(principal, topic_id, body.raw)
    return post_read(post)


@router.put("/{post_id}", response_model=PostRead)
async def update_post_endpoint(
    topic_id: int,
    post_id: int,
    body: PostUpdate,
    principal: Principal = Depends(get_principal),
    posts: PostService = Depends(get_post_service),
):
    post = await posts.update(principal, topic_id, post_id, body.raw)
    return post_read(post)


@router.delete("/{post_id}", response_model=PostDeleted)
async def destroy_post_endpoint(
    topic_id: int,
    post_id: int,
    principal: Principal = Depends(get_principal),
    posts: PostService = Depends(get_post_service),
):
    post = await posts.destroy(principal, topic_id, post_id)
    return PostDeleted(id=post.id, topic_id=post.topic_id, user_deleted=post.user_deleted)
