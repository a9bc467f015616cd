from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Service',
            fields=[
                ('code', models.CharField(max_length=16, primary_key=True, serialize=False)),
                ('name', models.CharField(blank=True, max_length=100)),
                ('last_token_number', models.IntegerField(default=0)),
            ],
            options={
                'ordering': ['code'],
            },
        ),
    ]
