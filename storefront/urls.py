"""
URL configuration for the storefront project.
"""
from django.contrib import admin
from django.urls import path

from ordering.api.views import graphql_view

urlpatterns = [
    path("admin/", admin.site.urls),
    path("graphql/", graphql_view, name="graphql"),
]
