from pydantic import BaseModel, Field
from typing import Literal, Optional

Plan = Literal["hobby", "pro"]
PostStatus = Literal["draft", "published"]
SubscriberStatus = Literal["pending", "active", "past_due", "unsubscribed"]

# 500KB content cap keeps oversized payloads out
MAX_CONTENT_LENGTH = 500_000


class CheckoutRequest(BaseModel):
    authorId: str = Field(min_length=1, max_length=255)


class CheckoutResponse(BaseModel):
    url: str


class PlanResponse(BaseModel):
    ok: bool = True
    plan: Plan


class CreatePostRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1, max_length=MAX_CONTENT_LENGTH)
    vibe: str = Field(default="default", max_length=50)
    status: PostStatus = "draft"
    isPaid: bool = False


class UpdatePostRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    content: Optional[str] = Field(default=None, max_length=MAX_CONTENT_LENGTH)
    vibe: Optional[str] = Field(default=None, max_length=50)
    status: Optional[PostStatus] = None
    isPaid: Optional[bool] = None


class PostResponse(BaseModel):
    id: int
    authorId: str
    title: str
    slug: str
    content: Optional[str] = None
    vibe: Optional[str] = None
    status: PostStatus
    isPaid: bool = False
    publishedAt: Optional[str] = None
    createdAt: Optional[str] = None


class AiRewriteRequest(BaseModel):
    text: str = Field(min_length=1)
    vibe: str = Field(default="default", max_length=50)


class AiSummarizeRequest(BaseModel):
    text: str = Field(min_length=1)


class AiColorsRequest(BaseModel):
    vibe: str = Field(min_length=1, max_length=50)
    title: Optional[str] = Field(default=None, max_length=500)
    content: Optional[str] = None


class AiTextResponse(BaseModel):
    text: str
    model: Optional[str] = None


class ColorScheme(BaseModel):
    background: str
    text: str
    primary: str


class UsageResponse(BaseModel):
    calls: int
    limit: int
    resetAt: str


class AuthorPageResponse(BaseModel):
    authorId: str
    handle: str
    subscribed: bool
    unsubscribeToken: Optional[str] = None
    posts: list[PostResponse] = Field(default_factory=list)


class PostPageResponse(BaseModel):
    authorId: str
    handle: str
    subscribed: bool
    paywalled: bool
    unsubscribeToken: Optional[str] = None
    post: PostResponse
