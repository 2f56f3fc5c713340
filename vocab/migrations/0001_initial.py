import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='VocabularyItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('word', models.CharField(max_length=200, unique=True)),
                ('definition', models.TextField(blank=True)),
                ('category', models.CharField(db_index=True, max_length=50)),
                ('level', models.CharField(choices=[('BEGINNER', 'Beginner'), ('INTERMEDIATE', 'Intermediate'), ('ADVANCED', 'Advanced')], default='BEGINNER', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'ordering': ['id'],
            },
        ),
        migrations.CreateModel(
            name='Achievement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True)),
                ('name', models.CharField(max_length=100)),
                ('description', models.TextField(blank=True)),
                ('emoji', models.CharField(blank=True, max_length=8)),
                ('category', models.CharField(choices=[('STREAK', 'Streak'), ('MILESTONE', 'Milestone'), ('REVIEW', 'Review'), ('MASTERY', 'Mastery')], max_length=20)),
                ('required_value', models.PositiveIntegerField()),
            ],
            options={
                'ordering': ['category', 'required_value'],
            },
        ),
        migrations.CreateModel(
            name='LearningProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('proficiency_level', models.CharField(choices=[('BEGINNER', 'Beginner'), ('INTERMEDIATE', 'Intermediate'), ('ADVANCED', 'Advanced')], default='BEGINNER', max_length=20)),
                ('goal_type', models.CharField(choices=[('EXAM', 'Exam'), ('TRAVEL', 'Travel'), ('BUSINESS', 'Business'), ('DAILY', 'Daily')], default='DAILY', max_length=20)),
                ('target_date', models.DateField(blank=True, null=True)),
                ('target_word_count', models.PositiveIntegerField(default=300)),
                ('user_timezone', models.CharField(default='UTC', max_length=64)),
                ('preferred_learning_times', models.JSONField(blank=True, default=dict)),
                ('weak_areas', models.JSONField(blank=True, default=list)),
                ('average_daily_words', models.FloatField(default=0.0)),
                ('average_accuracy', models.FloatField(blank=True, null=True)),
                ('learning_speed_trend', models.CharField(choices=[('FAST', 'Fast'), ('NORMAL', 'Normal'), ('SLOW', 'Slow')], default='NORMAL', max_length=10)),
                ('last_analysis_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='learning_profile', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='LearningStreak',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('current_streak', models.PositiveIntegerField(default=0)),
                ('longest_streak', models.PositiveIntegerField(default=0)),
                ('last_active_date', models.DateField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='learning_streak', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='MemoryRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('mastery_level', models.PositiveSmallIntegerField(default=0)),
                ('review_count', models.PositiveIntegerField(default=0)),
                ('correct_count', models.PositiveIntegerField(default=0)),
                ('wrong_count', models.PositiveIntegerField(default=0)),
                ('consecutive_wrong_count', models.PositiveIntegerField(default=0)),
                ('status', models.CharField(choices=[('LEARNING', 'Learning'), ('MASTERED', 'Mastered'), ('FORGOTTEN', 'Forgotten')], default='LEARNING', max_length=20)),
                ('next_review_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memory_records', to='vocab.vocabularyitem')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='memory_records', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['next_review_at'],
                'indexes': [models.Index(fields=['user', 'next_review_at', 'mastery_level'], name='memory_record_due_idx')],
                'constraints': [models.UniqueConstraint(fields=('user', 'item'), name='unique_memory_record_per_item')],
            },
        ),
        migrations.CreateModel(
            name='ActivityLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('activity_type', models.CharField(choices=[('REVIEW', 'Review'), ('QUIZ', 'Quiz'), ('DIALOGUE', 'Dialogue'), ('WORD_QUERY', 'Word Query')], max_length=20)),
                ('topic', models.CharField(blank=True, max_length=50)),
                ('is_correct', models.BooleanField(blank=True, null=True)),
                ('mastery_before', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('mastery_after', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('interval_hours', models.PositiveIntegerField(blank=True, null=True)),
                ('occurred_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('item', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activity_logs', to='vocab.vocabularyitem')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='activity_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-occurred_at'],
                'indexes': [models.Index(fields=['user', 'occurred_at'], name='activity_user_time_idx')],
            },
        ),
        migrations.CreateModel(
            name='StudyPlan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('goal_type', models.CharField(choices=[('EXAM', 'Exam'), ('TRAVEL', 'Travel'), ('BUSINESS', 'Business'), ('DAILY', 'Daily')], max_length=20)),
                ('target_date', models.DateField()),
                ('target_word_count', models.PositiveIntegerField()),
                ('daily_task_count', models.PositiveIntegerField()),
                ('current_phase', models.CharField(choices=[('BEGINNER', 'Beginner'), ('INTERMEDIATE', 'Intermediate'), ('ADVANCED', 'Advanced')], default='BEGINNER', max_length=20)),
                ('status', models.CharField(choices=[('ACTIVE', 'Active'), ('SUPERSEDED', 'Superseded'), ('COMPLETED', 'Completed')], default='ACTIVE', max_length=20)),
                ('completion_rate', models.FloatField(default=0.0)),
                ('learning_path', models.JSONField(blank=True, default=list)),
                ('adjustment_history', models.JSONField(blank=True, default=list)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='study_plans', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'constraints': [models.UniqueConstraint(condition=models.Q(('status', 'ACTIVE')), fields=('user',), name='one_active_study_plan_per_user')],
            },
        ),
        migrations.CreateModel(
            name='DailyTask',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('task_date', models.DateField()),
                ('task_type', models.CharField(choices=[('VOCABULARY', 'New Vocabulary'), ('REVIEW', 'Review'), ('WEAK_AREA', 'Weak Area Practice')], max_length=20)),
                ('topic', models.CharField(blank=True, max_length=50)),
                ('item_ids', models.JSONField(blank=True, default=list)),
                ('total_items', models.PositiveIntegerField(default=0)),
                ('completed_items', models.PositiveIntegerField(default=0)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('IN_PROGRESS', 'In Progress'), ('COMPLETED', 'Completed')], default='PENDING', max_length=20)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='tasks', to='vocab.studyplan')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='daily_tasks', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['task_date', 'pk'],
                'constraints': [models.UniqueConstraint(fields=('plan', 'task_date', 'task_type'), name='unique_task_per_plan_day')],
            },
        ),
        migrations.CreateModel(
            name='UserAchievement',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('unlocked_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('achievement', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='unlocks', to='vocab.achievement')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='achievements', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-unlocked_at'],
                'constraints': [models.UniqueConstraint(fields=('user', 'achievement'), name='unique_user_achievement')],
            },
        ),
    ]
