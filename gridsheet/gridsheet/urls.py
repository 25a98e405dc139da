from django.urls import include, path

urlpatterns = [
    path("sheets/", include("sheets.urls")),
]
