"""Pydantic request and response models for the Prompt Library API.

These models define the JSON schema for the API endpoints.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.  Card creation and editing use multipart forms
(they carry image files), so only the JSON payloads are modelled here.

Models
------
FavoriteRequest
    Payload for ``PATCH /api/cards/{id}/favorite``.
CardResponse
    A card record plus signed URLs for both of its images.
FilterOptionsResponse
    Distinct clients and models for the filter dropdowns.
DeleteResponse
    Result of ``DELETE /api/cards/{id}``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from promptlib.core.models import Card, FilterOptions


class FavoriteRequest(BaseModel):
    """Request body for the ``PATCH /api/cards/{id}/favorite`` endpoint.

    Attributes:
        is_favorited: ``True`` to mark as favorite, ``False`` to unmark.
            Sent as ``isFavorited``.
    """

    model_config = ConfigDict(populate_by_name=True)

    is_favorited: bool = Field(
        ...,
        alias="isFavorited",
        description="True to mark as favorite, False to unmark.",
    )


class CardResponse(BaseModel):
    """A prompt card as returned by the API.

    The stored image paths are included for reference; clients should load
    images through ``output_image_url`` and ``reference_image_url``, which
    are time-limited signed URLs.  A URL is ``None`` only if the image could
    not be signed.
    """

    id: str
    output_image_path: str
    reference_image_path: str
    prompt: str
    metadata: str
    client: str
    model: str
    seed: str
    llm_used: str | None = None
    notes: str | None = None
    is_favorited: bool = False
    created_at: datetime
    output_image_url: str | None = Field(
        default=None,
        description="Signed, time-limited URL of the output image.",
    )
    reference_image_url: str | None = Field(
        default=None,
        description="Signed, time-limited URL of the reference image.",
    )

    @classmethod
    def from_card(
        cls,
        card: Card,
        output_image_url: str | None = None,
        reference_image_url: str | None = None,
    ) -> CardResponse:
        """Build a response from a core :class:`~promptlib.core.models.Card`."""
        return cls(
            id=card.id,
            output_image_path=card.output_image_path,
            reference_image_path=card.reference_image_path,
            prompt=card.prompt,
            metadata=card.metadata,
            client=card.client,
            model=card.model,
            seed=card.seed,
            llm_used=card.llm_used,
            notes=card.notes,
            is_favorited=card.is_favorited,
            created_at=card.created_at,
            output_image_url=output_image_url,
            reference_image_url=reference_image_url,
        )


class FilterOptionsResponse(BaseModel):
    """Distinct filter values, each list sorted ascending without duplicates."""

    clients: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)

    @classmethod
    def from_options(cls, options: FilterOptions) -> FilterOptionsResponse:
        return cls(clients=options.clients, models=options.models)


class DeleteResponse(BaseModel):
    """Response body for ``DELETE /api/cards/{id}``."""

    success: bool = True
    deleted: str
