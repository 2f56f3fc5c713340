from django.urls import path
from . import views

urlpatterns = [
    # Reviews
    path('api/reviews/due/', views.due_reviews, name='due_reviews'),
    path('api/reviews/<int:pk>/', views.submit_review, name='submit_review'),

    # Study plan
    path('api/plan/', views.current_plan, name='current_plan'),
    path('api/plan/regenerate/', views.regenerate_plan, name='regenerate_plan'),
    path('api/tasks/<int:pk>/', views.complete_task, name='complete_task'),

    # Progress
    path('api/statistics/', views.statistics, name='statistics'),
    path('api/progress/', views.progress, name='progress'),

    # Profile
    path('api/profile/', views.profile, name='profile'),
    path('api/profile/update/', views.update_profile, name='update_profile'),
]
