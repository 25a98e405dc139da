from django.urls import path
from . import views

app_name = "sheets"

urlpatterns = [
    path("<str:instance>/", views.index, name="index"),
    path("<str:instance>/<str:operation>/", views.operation, name="operation"),
]
