from django.urls import path

from skew_protection.views import DeploymentInfoView

urlpatterns = [
    path(
        "api/deployment-info/",
        DeploymentInfoView.as_view(),
        name="deployment-info",
    ),
]
