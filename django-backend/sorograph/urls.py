"""
URL configuration for SoroGraph project.
"""
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from strawberry.django.views import GraphQLView

from sorograph.explorer.schema import schema
from sorograph.explorer.views import metrics_view

urlpatterns = [
    path("api/explorer/", include("sorograph.explorer.urls")),
    path("graphql/", GraphQLView.as_view(schema=schema)),
    path("metrics/", metrics_view, name="metrics"),
    # OpenAPI Schema & Docs
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
]
