from django import forms

INGEST_EXTENSIONS = ('csv', 'xlsx', 'xls')


class RangeForm(forms.Form):
    range = forms.CharField(required=False, max_length=32)


class CellForm(forms.Form):
    cell = forms.CharField(max_length=16)


class SetCellForm(CellForm):
    value = forms.CharField(required=False, strip=False)


class ValuesForm(forms.Form):
    """Column -> value mapping for add."""
    values = forms.JSONField(required=False)

    def clean_values(self):
        values = self.cleaned_data.get('values') or {}
        if not isinstance(values, dict):
            raise forms.ValidationError('values must be an object of {column: value}.')
        return values


class UpdateForm(ValuesForm):
    row = forms.IntegerField(min_value=1)


class RowForm(forms.Form):
    row = forms.IntegerField(min_value=1)


class PushForm(forms.Form):
    rows = forms.JSONField()

    def clean_rows(self):
        rows = self.cleaned_data.get('rows')
        if not isinstance(rows, list) or not all(isinstance(r, (list, dict)) for r in rows):
            raise forms.ValidationError('rows must be a list of lists or objects.')
        return rows


class QueryForm(forms.Form):
    where = forms.CharField(max_length=256)
    limit = forms.IntegerField(required=False, min_value=1)


class SortForm(forms.Form):
    column = forms.CharField(max_length=128)
    order = forms.ChoiceField(required=False, choices=[('asc', 'asc'), ('desc', 'desc')])


class FillForm(forms.Form):
    range = forms.CharField(max_length=32)
    pattern = forms.CharField(strip=False)


class ResizeForm(forms.Form):
    rows = forms.IntegerField(required=False, min_value=0)
    cols = forms.IntegerField(required=False, min_value=0)


class RenameForm(forms.Form):
    column = forms.CharField(max_length=128)
    name = forms.CharField(max_length=128)


class DumpForm(forms.Form):
    file = forms.CharField(required=False)


class IngestForm(forms.Form):
    """Ingest from a path, inline CSV text, or an uploaded CSV/Excel file."""

    file = forms.CharField(required=False)
    csv = forms.CharField(required=False, strip=False)
    upload = forms.FileField(required=False)

    def clean_upload(self):
        upload = self.cleaned_data.get('upload')
        if upload:
            ext = upload.name.rsplit('.', 1)[-1].lower()
            if ext not in INGEST_EXTENSIONS:
                raise forms.ValidationError(
                    'Only CSV files and Excel files (.xlsx, .xls) are allowed.'
                )
            if upload.size > 10 * 1024 * 1024:
                raise forms.ValidationError('File size must be less than 10MB.')
        return upload

    def source(self):
        """(file, csv) for the ingest operation; None where not supplied."""
        data = self.cleaned_data
        file = data.get('upload') or data.get('file') or None
        csv = data.get('csv')
        if csv == '' and 'csv' not in self.data:
            csv = None
        return file, csv


class NoArgumentsForm(forms.Form):
    pass
