from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('core', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='notification',
            name='kind',
            field=models.CharField(choices=[('application_received', 'application received'), ('application_accepted', 'application accepted'), ('application_rejected', 'application rejected'), ('request_accepted', 'request accepted'), ('request_started', 'request started'), ('request_completed', 'request completed'), ('request_cancelled', 'request cancelled'), ('nurse_verified', 'nurse verified'), ('nurse_rejected', 'nurse rejected')], max_length=32),
        ),
    ]
