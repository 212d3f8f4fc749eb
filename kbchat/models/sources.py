"""
Source descriptors: where a knowledge base comes from
"""
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):
    """Category of origin for ingested knowledge"""
    LINK = "link"
    DOCUMENT = "document"
    SOCIAL_PROFILE = "social_profile"
    PASTED_TEXT = "pasted_text"


class SocialPlatform(str, Enum):
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    TIKTOK = "tiktok"


class LinkSource(BaseModel):
    """A website URL"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["link"] = "link"
    url: str = Field(..., min_length=1, max_length=2048)


class DocumentSource(BaseModel):
    """An uploaded PDF or Word document"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["document"] = "document"
    content: bytes = Field(..., repr=False)
    filename: str
    content_type: Optional[str] = None


class SocialProfileSource(BaseModel):
    """A social media profile handle or URL"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["social_profile"] = "social_profile"
    platform: SocialPlatform
    handle: str = Field(..., min_length=1, max_length=2048)


class PastedTextSource(BaseModel):
    """Text pasted by the user, possibly in place of a source that failed"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["pasted_text"] = "pasted_text"
    text: str
    replaces: Optional[SourceKind] = None
    platform: Optional[SocialPlatform] = None

    def effective_kind(self) -> SourceKind:
        return self.replaces or SourceKind.PASTED_TEXT


SourceDescriptor = Annotated[
    Union[LinkSource, DocumentSource, SocialProfileSource, PastedTextSource],
    Field(discriminator="kind"),
]

# Sources that can be described in a JSON request body
JsonSourceDescriptor = Annotated[
    Union[LinkSource, SocialProfileSource, PastedTextSource],
    Field(discriminator="kind"),
]


_PLATFORM_DESCRIPTIONS = {
    SocialPlatform.INSTAGRAM: "Instagram profile",
    SocialPlatform.LINKEDIN: "LinkedIn profile",
    SocialPlatform.FACEBOOK: "Facebook profile",
    SocialPlatform.TIKTOK: "TikTok profile",
}

_KIND_DESCRIPTIONS = {
    SourceKind.LINK: "website content",
    SourceKind.DOCUMENT: "PDF or Word document",
    SourceKind.SOCIAL_PROFILE: "social media profile",
    SourceKind.PASTED_TEXT: "pasted content",
}


def effective_kind(source) -> SourceKind:
    """Source kind used for condensation and messaging"""
    if isinstance(source, PastedTextSource):
        return source.effective_kind()
    return SourceKind(source.kind)


def describe_source(kind: SourceKind, platform: Optional[SocialPlatform] = None) -> str:
    """Human readable description, e.g. "website content" """
    if platform is not None and kind in (SourceKind.SOCIAL_PROFILE, SourceKind.PASTED_TEXT):
        return _PLATFORM_DESCRIPTIONS[platform]
    return _KIND_DESCRIPTIONS[kind]


def source_platform(source) -> Optional[SocialPlatform]:
    return getattr(source, "platform", None)
