import json
import os

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError
from django.urls import reverse
from django.utils import timezone

from core.models import HealthRecord, MedicalReport
from core.services.reports import delete_report

pytestmark = pytest.mark.django_db

PDF = b'%PDF-1.4\n% test report\n'


@pytest.fixture(autouse=True)
def media(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path)
    return tmp_path


@pytest.fixture
def record(citizen):
    return HealthRecord.objects.create(user=citizen, checkup_date=timezone.now(), checkup_type='Routine')


def _upload(client, record, **overrides):
    body = {
        'healthRecordId': record.id,
        'reportType': 'Blood Test',
        'reportName': 'Complete blood count',
        'reportDate': '2025-03-10T10:00:00+05:30',
        'reportDetails': json.dumps({'findings': 'Mild anaemia', 'conclusion': 'Iron deficiency', 'status': 'Abnormal'}),
        'labInfo': json.dumps({'name': 'Aster Labs'}),
        'reportFile': SimpleUploadedFile('cbc.pdf', PDF, content_type='application/pdf'),
    }
    body.update(overrides)
    return client.post(reverse('reports'), body, format='multipart')


def test_create_with_file_and_download(citizen_api, record):
    r = _upload(citizen_api, record)
    assert r.status_code == 201, r.data
    report = r.data['report']
    assert report['fileInfo']['originalName'] == 'cbc.pdf'
    assert report['fileInfo']['mimeType'] == 'application/pdf'
    assert report['fileInfo']['fileSize'] == len(PDF)
    assert report['reportDetails']['status'] == 'Abnormal'
    assert report['labInfo'] == {'name': 'Aster Labs'}
    assert len(report['accessCode']) == 8
    assert report['healthRecord']['id'] == record.id

    r = citizen_api.get(reverse('report-download', args=[report['id']]))
    assert r.status_code == 200
    assert b''.join(r.streaming_content) == PDF
    assert 'cbc.pdf' in r['Content-Disposition']


def test_create_without_file_as_json(citizen_api, record):
    r = citizen_api.post(reverse('reports'), {
        'healthRecordId': record.id, 'reportType': 'ECG', 'reportName': 'Resting ECG',
        'reportDate': '2025-03-10T10:00:00+05:30', 'reportDetails': {'findings': 'Sinus rhythm'},
    }, format='json')
    assert r.status_code == 201, r.data
    assert r.data['report']['fileInfo'] is None
    assert r.data['report']['reportDetails'] == {'findings': 'Sinus rhythm', 'status': 'Pending'}

    r = citizen_api.get(reverse('report-download', args=[r.data['report']['id']]))
    assert r.status_code == 404


def test_rejects_disallowed_file_type(citizen_api, record):
    r = _upload(citizen_api, record, reportFile=SimpleUploadedFile('run.exe', b'MZ', content_type='application/octet-stream'))
    assert r.status_code == 400
    assert 'reportFile' in r.data['error']['fields']
    assert not MedicalReport.objects.exists()


def test_rejects_oversized_file(citizen_api, record, settings):
    settings.UPLOAD_MAX_MB = 0
    r = _upload(citizen_api, record)
    assert r.status_code == 400
    assert 'reportFile' in r.data['error']['fields']


def test_report_must_reference_own_record(citizen_api, db):
    from core.models import User
    other = User.objects.create_user(username='other', mobile_number='9123456780', national_id='210987654321',
                                     is_verified=True)
    foreign = HealthRecord.objects.create(user=other, checkup_date=timezone.now(), checkup_type='Routine')
    r = _upload(citizen_api, foreign)
    assert r.status_code == 404


def test_delete_removes_file(citizen_api, record, media, django_capture_on_commit_callbacks):
    r = _upload(citizen_api, record)
    report = MedicalReport.objects.get(id=r.data['report']['id'])
    path = report.file.path
    assert (media / report.file.name).exists()

    with django_capture_on_commit_callbacks(execute=True):
        r = citizen_api.delete(reverse('report-detail', args=[report.id]))
    assert r.status_code == 200
    assert not MedicalReport.objects.filter(id=report.id).exists()
    assert not os.path.exists(path)


def test_failed_delete_keeps_file(citizen_api, record, monkeypatch, django_capture_on_commit_callbacks):
    report = MedicalReport.objects.get(id=_upload(citizen_api, record).data['report']['id'])
    path = report.file.path

    def refuse(self, *args, **kwargs):
        raise DatabaseError('row is locked')

    monkeypatch.setattr(MedicalReport, 'delete', refuse)
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(DatabaseError):
            delete_report(report)
    assert callbacks == []
    assert os.path.exists(path)


def test_record_delete_removes_report_files(citizen_api, record, django_capture_on_commit_callbacks):
    report = MedicalReport.objects.get(id=_upload(citizen_api, record).data['report']['id'])
    path = report.file.path

    with django_capture_on_commit_callbacks(execute=True):
        r = citizen_api.delete(reverse('record-detail', args=[record.id]))
    assert r.status_code == 200
    assert not MedicalReport.objects.filter(id=report.id).exists()
    assert not os.path.exists(path)


def test_failed_record_delete_keeps_report_files(citizen_api, record, monkeypatch, django_capture_on_commit_callbacks):
    report = MedicalReport.objects.get(id=_upload(citizen_api, record).data['report']['id'])
    path = report.file.path

    def refuse(self, *args, **kwargs):
        raise DatabaseError('row is locked')

    monkeypatch.setattr(HealthRecord, 'delete', refuse)
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        r = citizen_api.delete(reverse('record-detail', args=[record.id]))
    assert r.status_code == 500
    assert callbacks == []
    assert os.path.exists(path)
    assert MedicalReport.objects.filter(id=report.id).exists()


def test_replacing_file_removes_old_one_after_save(citizen_api, record, django_capture_on_commit_callbacks):
    report = MedicalReport.objects.get(id=_upload(citizen_api, record).data['report']['id'])
    old_path = report.file.path

    with django_capture_on_commit_callbacks(execute=True):
        r = citizen_api.put(reverse('report-detail', args=[report.id]), {
            'reportFile': SimpleUploadedFile('cbc-v2.pdf', PDF, content_type='application/pdf'),
        }, format='multipart')
    assert r.status_code == 200, r.data
    assert r.data['report']['fileInfo']['originalName'] == 'cbc-v2.pdf'
    assert not os.path.exists(old_path)
    report.refresh_from_db()
    assert os.path.exists(report.file.path)


def test_update_and_list(citizen_api, record):
    report_id = _upload(citizen_api, record).data['report']['id']
    r = citizen_api.put(reverse('report-detail', args=[report_id]), {'status': 'Final', 'isPublic': True}, format='json')
    assert r.status_code == 200, r.data
    assert r.data['report']['status'] == 'Final'
    assert r.data['report']['isPublic'] is True

    r = citizen_api.get(reverse('reports'), {'type': 'Blood Test'})
    assert r.data['pagination']['total'] == 1
    r = citizen_api.get(reverse('reports'), {'type': 'MRI'})
    assert r.data['pagination']['total'] == 0


def test_search(citizen_api, record):
    _upload(citizen_api, record)
    _upload(citizen_api, record, reportName='Chest X-ray', reportType='X-Ray',
            reportDetails=json.dumps({'findings': 'Clear lung fields'}))
    r = citizen_api.get(reverse('reports-search'), {'q': 'anaemia'})
    assert r.data['pagination']['total'] == 1
    r = citizen_api.get(reverse('reports-search'), {'q': 'aster'})
    assert r.data['pagination']['total'] == 2
    r = citizen_api.get(reverse('reports-search'), {'type': 'X-Ray'})
    assert r.data['reports'][0]['reportName'] == 'Chest X-ray'


def test_public_access_by_code(citizen_api, api, record):
    report_id = _upload(citizen_api, record, isPublic='true').data['report']['id']
    report = MedicalReport.objects.get(id=report_id)

    r = api.get(reverse('report-access', args=[report.access_code.lower()]))
    assert r.status_code == 200
    assert r.data['report']['reportName'] == 'Complete blood count'
    assert 'nationalIdNumber' not in r.data['report']['user']
    assert 'fileInfo' not in r.data['report']

    report.is_public = False
    report.save()
    r = api.get(reverse('report-access', args=[report.access_code]))
    assert r.status_code == 404
